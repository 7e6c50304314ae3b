"""
Tests for core helpers: float rounding, validation, timeframes and run logging.
"""

import io
import math

import pytest
from loguru import logger

from edgelab.core.enums import PositionSide, Timeframe
from edgelab.core.exceptions.backtest import InvalidConfigError
from edgelab.core.types import (
    calculate_pnl,
    round_amount,
    round_percentage,
    round_price,
    safe_divide,
)
from edgelab.core.utils.decorators import log_run
from edgelab.core.utils.validation import (
    validate_non_negative,
    validate_percentage,
    validate_positive,
)


class TestFinancialHelpers:
    """Tests for float helpers."""

    def test_should_round_to_display_precision(self) -> None:
        assert round_price(101.23456) == 101.23
        assert round_amount(0.123456789123) == 0.12345679
        assert round_percentage(12.345678) == 12.3457

    def test_should_keep_infinite_percentages(self) -> None:
        assert round_percentage(math.inf) == math.inf

    @pytest.mark.parametrize(
        "side, expected",
        [(PositionSide.LONG, 20.0), (PositionSide.SHORT, -20.0)],
    )
    def test_should_sign_pnl_by_side(self, side, expected) -> None:
        assert calculate_pnl(100.0, 110.0, 2.0, side) == expected

    def test_should_use_absolute_quantity(self) -> None:
        assert calculate_pnl(100.0, 90.0, -1.0, PositionSide.SHORT) == 10.0

    def test_should_fall_back_on_zero_or_non_finite_denominator(self) -> None:
        assert safe_divide(10.0, 4.0) == 2.5
        assert safe_divide(1.0, 0.0) == 0.0
        assert safe_divide(1.0, math.inf, default=-1.0) == -1.0


class TestValidationHelpers:
    """Tests for config validation helpers."""

    def test_should_return_valid_values(self) -> None:
        assert validate_positive(5.0, "capital") == 5.0
        assert validate_non_negative(0.0, "fee") == 0.0
        assert validate_percentage(100.0, "size") == 100.0
        assert validate_percentage(0.0, "size", allow_zero=True) == 0.0

    @pytest.mark.parametrize("value", [0.0, -1.0, math.nan, math.inf, None])
    def test_should_reject_non_positive(self, value) -> None:
        with pytest.raises(InvalidConfigError, match="capital must be positive"):
            validate_positive(value, "capital")

    def test_should_reject_negative(self) -> None:
        with pytest.raises(InvalidConfigError, match="fee must be non-negative"):
            validate_non_negative(-0.01, "fee")

    @pytest.mark.parametrize("value", [0.0, 100.5, -3.0])
    def test_should_reject_out_of_range_percentage(self, value) -> None:
        with pytest.raises(InvalidConfigError, match="between 0 and 100"):
            validate_percentage(value, "size")


class TestTimeframe:
    """Tests for bar frequencies."""

    def test_should_parse_case_insensitively(self) -> None:
        assert Timeframe.from_string("1H") == Timeframe.H1

    def test_should_reject_unknown_timeframe(self) -> None:
        with pytest.raises(ValueError, match="Unsupported timeframe"):
            Timeframe.from_string("2d")

    def test_should_annualize_calendar_bars(self) -> None:
        assert Timeframe.D1.periods_per_year == pytest.approx(365.0)
        assert Timeframe.H1.periods_per_year == pytest.approx(8760.0)
        assert Timeframe.H4.is_intraday
        assert not Timeframe.W1.is_intraday


class TestLogRun:
    """Tests for the @log_run decorator."""

    @pytest.fixture
    def sink(self):
        stream = io.StringIO()
        logger.enable("edgelab")
        handler_id = logger.add(stream, level="DEBUG", format="{level} {message}")
        yield stream
        logger.remove(handler_id)
        logger.disable("edgelab")

    def test_should_log_start_and_completion(self, sink) -> None:
        @log_run("Sample run")
        def run(candles, num_runs=3):
            return len(candles) * num_runs

        assert run([1, 2]) == 6

        output = sink.getvalue()
        assert "INFO Sample run started" in output
        assert "Sample run completed in" in output

    def test_should_log_and_reraise_failures(self, sink) -> None:
        @log_run("Failing run", level="DEBUG")
        def run():
            raise InvalidConfigError("bad config")

        with pytest.raises(InvalidConfigError, match="bad config"):
            run()

        output = sink.getvalue()
        assert "DEBUG Failing run started" in output
        assert "ERROR Failing run failed after" in output
        assert "InvalidConfigError: bad config" in output

    def test_should_preserve_function_metadata(self) -> None:
        @log_run("Documented run")
        def run() -> None:
            """Docstring."""

        assert run.__name__ == "run"
        assert run.__doc__ == "Docstring."
