"""Tests for unit normalization and hour buckets."""

from datetime import UTC, datetime, timedelta, timezone

from cardano_portfolio_tracker.portfolio.units import (
    LOVELACE_DECIMALS,
    LOVELACE_UNIT,
    asset_unit,
    format_unit,
    to_human,
    to_snapshot_bucket,
)


class TestToHuman:
    """Tests for to_human."""

    def test_scales_by_decimals(self) -> None:
        assert to_human("1500000", LOVELACE_DECIMALS) == 1.5

    def test_accepts_int(self) -> None:
        assert to_human(250, 2) == 2.5

    def test_no_decimals_returns_raw(self) -> None:
        """Absent or non-positive decimals leave the value unchanged."""
        assert to_human("42") == 42.0
        assert to_human("42", 0) == 42.0
        assert to_human("42", -3) == 42.0

    def test_malformed_input_is_zero(self) -> None:
        """Bad upstream data yields 0 instead of raising."""
        assert to_human("not-a-number", 6) == 0.0
        assert to_human(None, 6) == 0.0
        assert to_human("", 6) == 0.0
        assert to_human("NaN", 6) == 0.0
        assert to_human("Infinity") == 0.0

    def test_large_quantity_keeps_precision(self) -> None:
        """uint64-sized quantities survive the scaling."""
        assert to_human("18446744073709551615", 18) == 18.446744073709551615


class TestToSnapshotBucket:
    """Tests for to_snapshot_bucket."""

    def test_truncates_to_hour(self) -> None:
        moment = datetime(2026, 3, 1, 12, 59, 59, 999999, tzinfo=UTC)
        assert to_snapshot_bucket(moment) == datetime(2026, 3, 1, 12, tzinfo=UTC)

    def test_converts_to_utc(self) -> None:
        moment = datetime(2026, 3, 1, 14, 30, tzinfo=timezone(timedelta(hours=2)))
        assert to_snapshot_bucket(moment) == datetime(2026, 3, 1, 12, tzinfo=UTC)

    def test_naive_treated_as_utc(self) -> None:
        bucket = to_snapshot_bucket(datetime(2026, 3, 1, 7, 15))
        assert bucket == datetime(2026, 3, 1, 7, tzinfo=UTC)
        assert bucket.tzinfo is not None

    def test_idempotent(self) -> None:
        bucket = datetime(2026, 3, 1, 12, tzinfo=UTC)
        assert to_snapshot_bucket(bucket) == bucket


class TestUnits:
    """Tests for unit helpers."""

    def test_asset_unit_concatenates(self) -> None:
        assert asset_unit("ab" * 28, "4d494e") == "ab" * 28 + "4d494e"
        assert asset_unit("ab" * 28, None) == "ab" * 28

    def test_format_unit(self) -> None:
        assert format_unit(LOVELACE_UNIT) == "ADA"
        assert format_unit("BTC") == "BTC"
        long_unit = "0123456789abcdef" * 4
        assert format_unit(long_unit) == "01234567…abcdef"
