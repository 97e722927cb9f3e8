"""
Tests for SLA classification and time-in-stage formatting.
"""
from datetime import datetime, timedelta, timezone

import pytest

from services.pipeline_service.app.sla import (
    DEFAULT_THRESHOLDS,
    NO_SLA,
    SLAStatus,
    SLAThresholds,
    classify_sla,
    format_time_in_stage,
    time_in_stage,
)
from services.pipeline_service.app.stages import STAGE_ORDER, Stage

QUOTE_SENT_TABLE = {
    Stage.QUOTE_SENT: SLAThresholds(warning_after=timedelta(hours=1), overdue_after=timedelta(hours=4)),
}


class TestClassifySLA:
    def test_quote_sent_ten_minutes_is_ok(self):
        """A lead 10 minutes into quote_sent (1h / 4h) is on track."""
        assert classify_sla(Stage.QUOTE_SENT, timedelta(minutes=10), QUOTE_SENT_TABLE) == SLAStatus.OK

    def test_quote_sent_five_hours_is_overdue(self):
        assert classify_sla(Stage.QUOTE_SENT, timedelta(hours=5), QUOTE_SENT_TABLE) == SLAStatus.OVERDUE

    def test_band_boundaries(self):
        """Each band is closed on its lower edge: 1h is warning, 4h is overdue."""
        just_before = timedelta(hours=1) - timedelta(microseconds=1)
        assert classify_sla(Stage.QUOTE_SENT, just_before, QUOTE_SENT_TABLE) == SLAStatus.OK
        assert classify_sla(Stage.QUOTE_SENT, timedelta(hours=1), QUOTE_SENT_TABLE) == SLAStatus.WARNING
        almost_overdue = timedelta(hours=4) - timedelta(microseconds=1)
        assert classify_sla(Stage.QUOTE_SENT, almost_overdue, QUOTE_SENT_TABLE) == SLAStatus.WARNING
        assert classify_sla(Stage.QUOTE_SENT, timedelta(hours=4), QUOTE_SENT_TABLE) == SLAStatus.OVERDUE

    def test_bands_partition_elapsed_time(self):
        """Walking elapsed time upward visits ok, then warning, then overdue, never going back."""
        order = [SLAStatus.OK, SLAStatus.WARNING, SLAStatus.OVERDUE]
        seen = []
        for minutes in range(0, 6 * 60, 7):
            status = classify_sla(Stage.QUOTE_SENT, timedelta(minutes=minutes), QUOTE_SENT_TABLE)
            assert status in order
            if not seen or seen[-1] != status:
                seen.append(status)
        assert seen == order

    @pytest.mark.parametrize("stage", STAGE_ORDER)
    def test_every_stage_classifies_with_defaults(self, stage):
        for elapsed in (timedelta(0), timedelta(hours=3), timedelta(days=30)):
            assert classify_sla(stage, elapsed) in set(SLAStatus)

    def test_negative_elapsed_is_clamped(self):
        assert classify_sla(Stage.NEW_LEAD, timedelta(hours=-3)) == SLAStatus.OK

    def test_stage_missing_from_table_uses_fallback(self):
        fallback = SLAThresholds(warning_after=timedelta(hours=2), overdue_after=timedelta(hours=3))
        assert classify_sla(Stage.CONTACTED, timedelta(hours=2), QUOTE_SENT_TABLE, fallback) == SLAStatus.WARNING
        assert classify_sla(Stage.CONTACTED, timedelta(hours=3), QUOTE_SENT_TABLE, fallback) == SLAStatus.OVERDUE

    def test_stage_missing_from_table_uses_configured_fallback(self):
        """Default fallback is 18h warning / 24h overdue."""
        assert classify_sla(Stage.BOOKED, timedelta(hours=17), QUOTE_SENT_TABLE) == SLAStatus.OK
        assert classify_sla(Stage.BOOKED, timedelta(hours=18), QUOTE_SENT_TABLE) == SLAStatus.WARNING
        assert classify_sla(Stage.BOOKED, timedelta(hours=24), QUOTE_SENT_TABLE) == SLAStatus.OVERDUE

    def test_default_new_lead_window(self):
        """New leads must be contacted within 30 minutes; warning from 22.5m."""
        assert classify_sla(Stage.NEW_LEAD, timedelta(minutes=20)) == SLAStatus.OK
        assert classify_sla(Stage.NEW_LEAD, timedelta(minutes=25)) == SLAStatus.WARNING
        assert classify_sla(Stage.NEW_LEAD, timedelta(minutes=30)) == SLAStatus.OVERDUE

    def test_stages_without_sla_are_always_ok(self):
        assert DEFAULT_THRESHOLDS[Stage.BOOKED] == NO_SLA
        assert classify_sla(Stage.BOOKED, timedelta(days=365)) == SLAStatus.OK
        assert classify_sla(Stage.LOST, timedelta(days=365)) == SLAStatus.OK


class TestSLAThresholds:
    def test_from_sla_hours_warns_at_three_quarters(self):
        pair = SLAThresholds.from_sla_hours(12)
        assert pair.warning_after == timedelta(hours=9)
        assert pair.overdue_after == timedelta(hours=12)

    def test_rejects_inverted_pair(self):
        with pytest.raises(ValueError):
            SLAThresholds(warning_after=timedelta(hours=5), overdue_after=timedelta(hours=1))

    def test_rejects_negative_warning(self):
        with pytest.raises(ValueError):
            SLAThresholds(warning_after=timedelta(hours=-1), overdue_after=timedelta(hours=1))


class TestTimeInStage:
    NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize(
        "delta, expected",
        [
            (timedelta(seconds=30), "Just now"),
            (timedelta(minutes=45), "45m"),
            (timedelta(hours=2), "2h"),
            (timedelta(hours=3, minutes=20), "3h 20m"),
            (timedelta(days=1, hours=5), "1 day"),
            (timedelta(days=4), "4 days"),
        ],
    )
    def test_format(self, delta, expected):
        assert format_time_in_stage(self.NOW - delta, self.NOW) == expected

    def test_unknown_timestamp(self):
        assert format_time_in_stage(None, self.NOW) == "Unknown"

    def test_future_timestamp_is_just_now(self):
        assert format_time_in_stage(self.NOW + timedelta(hours=1), self.NOW) == "Just now"

    def test_naive_timestamps_are_utc(self):
        naive = datetime(2026, 3, 2, 11, 0)
        assert time_in_stage(naive, self.NOW) == timedelta(hours=1)
