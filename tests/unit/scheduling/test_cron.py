"""Unit tests for recurrence resolution and next fire time evaluation."""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from cookie_sentinel.scheduling import (
    DEFAULT_CRON,
    RECURRENCE_CRON,
    CronEvaluationError,
    CronValidationError,
    DomainScanConfig,
    Recurrence,
    next_fire_time,
    resolve_cron,
    validate_cron_expression,
)


class TestValidateCronExpression:

    @pytest.mark.parametrize("expr", ["0 2 * * *", "*/15 9-17 * * 1-5", "30 3 1 * *", "  0  4 * * 0 "])
    def test_valid_expressions(self, expr):
        validate_cron_expression(expr)

    @pytest.mark.parametrize("expr", ["", "0 2 * *", "0 2 * * * *", "@daily"])
    def test_wrong_field_count(self, expr):
        with pytest.raises(CronValidationError, match="5 fields"):
            validate_cron_expression(expr)

    @pytest.mark.parametrize("expr", ["61 * * * *", "0 25 * * *", "0 2 * * mon-xyz"])
    def test_out_of_range_fields(self, expr):
        with pytest.raises(CronValidationError, match="Invalid cron expression"):
            validate_cron_expression(expr)


class TestResolveCron:

    def test_named_recurrences(self):
        assert RECURRENCE_CRON[Recurrence.HOURLY] == "0 * * * *"
        assert RECURRENCE_CRON[Recurrence.WEEKLY] == "0 2 * * 1"
        for recurrence, expr in RECURRENCE_CRON.items():
            assert resolve_cron(DomainScanConfig(scan_interval=recurrence)) == expr

    def test_named_recurrence_ignores_cron_expression(self):
        config = DomainScanConfig(scan_interval=Recurrence.DAILY, cron_expression="*/5 * * * *")
        assert resolve_cron(config) == DEFAULT_CRON

    def test_custom_expression_is_normalized(self):
        config = DomainScanConfig(scan_interval=Recurrence.CUSTOM, cron_expression="30  3 * * 1-5")
        assert resolve_cron(config) == "30 3 * * 1-5"

    def test_invalid_custom_expression_falls_back_to_daily(self, caplog):
        config = DomainScanConfig(scan_interval=Recurrence.CUSTOM, cron_expression="not a cron")

        assert resolve_cron(config) == DEFAULT_CRON
        assert "falling back" in caplog.text


class TestNextFireTime:

    def test_evaluated_in_domain_timezone(self):
        berlin = ZoneInfo("Europe/Berlin")
        # 12:00 in Berlin (CEST, UTC+2)
        now = datetime(2026, 6, 15, 10, 0, tzinfo=timezone.utc)

        next_run = next_fire_time("0 2 * * *", "Europe/Berlin", now)

        assert next_run == datetime(2026, 6, 16, 2, 0, tzinfo=berlin)
        assert next_run.astimezone(timezone.utc) == datetime(2026, 6, 16, 0, 0, tzinfo=timezone.utc)

    def test_strictly_after_from_time(self):
        tz = ZoneInfo("America/New_York")
        fire = datetime(2026, 6, 16, 2, 0, tzinfo=tz)

        assert next_fire_time("0 2 * * *", "America/New_York", fire) == datetime(2026, 6, 17, 2, 0, tzinfo=tz)

    def test_naive_time_is_taken_as_local(self):
        # Wednesday; weekly recurrence fires on Mondays
        next_run = next_fire_time("0 2 * * 1", "UTC", datetime(2026, 6, 17, 8, 30))

        assert next_run == datetime(2026, 6, 22, 2, 0, tzinfo=ZoneInfo("UTC"))

    def test_defaults_to_now(self):
        before = datetime.now(timezone.utc)

        next_run = next_fire_time("0 * * * *")

        assert next_run > before
        assert (next_run - before).total_seconds() <= 3600

    def test_invalid_timezone(self):
        with pytest.raises(CronEvaluationError, match="Invalid timezone"):
            next_fire_time("0 2 * * *", "Mars/Olympus_Mons")

    def test_invalid_expression(self):
        with pytest.raises(CronEvaluationError):
            next_fire_time("bad", "UTC", datetime(2026, 6, 15, tzinfo=timezone.utc))
