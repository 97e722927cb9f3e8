"""
Navigation links shown on a pipeline item.
The targets (dialer, WhatsApp inbox, quote viewer) live elsewhere; we only build URLs.
"""
from typing import Optional
from urllib.parse import quote

from . import config
from .schemas import LeadLinks


def build_links(
    phone: Optional[str],
    quote_slug: Optional[str] = None,
    has_whatsapp_window: bool = False,
) -> LeadLinks:
    """Build call / inbox / quote-viewer links for a lead."""
    phone = (phone or "").strip()

    call = f"tel:{phone.replace(' ', '')}" if phone else None
    inbox = None
    if phone and has_whatsapp_window:
        inbox = f"{config.INBOX_BASE_PATH}?phone={quote(phone, safe='')}"
    quote_link = None
    if quote_slug:
        quote_link = f"{config.QUOTE_VIEWER_BASE_PATH.rstrip('/')}/{quote(quote_slug, safe='')}"

    return LeadLinks(call=call, inbox=inbox, quote=quote_link)
