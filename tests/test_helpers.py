"""Query/body parsing helper tests."""

from datetime import datetime, timedelta, timezone

import pytest

from bcl_workflow.core.exceptions import ValidationError
from bcl_workflow.utils import helpers
from bcl_workflow.utils.helpers import parse_datetime, parse_int_arg, utc_now


class TestParseDatetime:
    def test_zulu_suffix(self):
        assert parse_datetime("2026-02-09T03:00:00Z") == datetime(2026, 2, 9, 3, tzinfo=timezone.utc)

    def test_naive_is_utc(self):
        assert parse_datetime("2026-02-09T03:00:00").tzinfo == timezone.utc

    def test_offset_is_kept(self):
        parsed = parse_datetime("2026-02-09T10:00:00+07:00")
        assert parsed.utcoffset() == timedelta(hours=7)

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty_is_none(self, value):
        assert parse_datetime(value) is None

    def test_garbage_is_validation(self):
        with pytest.raises(ValidationError) as exc:
            parse_datetime("next tuesday", "now")
        assert exc.value.details == {"now": "next tuesday"}


class TestParseIntArg:
    def test_default_when_missing(self):
        assert parse_int_arg(None, "limit", default=50) == 50

    def test_clamped(self):
        assert parse_int_arg("500", "limit", default=50, minimum=1, maximum=200) == 200
        assert parse_int_arg("-3", "limit", default=50, minimum=1) == 1

    def test_non_integer_is_validation(self):
        with pytest.raises(ValidationError):
            parse_int_arg("ten", "limit", default=50)


class TestModuleSurface:
    def test_utc_now_is_aware(self):
        assert utc_now().tzinfo == timezone.utc

    def test_only_used_parsers_are_exported(self):
        public = {name for name in vars(helpers) if not name.startswith("_") and callable(getattr(helpers, name))}
        assert {"utc_now", "parse_datetime", "parse_int_arg"} <= public
        assert "parse_date" not in public
