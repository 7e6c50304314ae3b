"""
Custom exception hierarchy for the backtesting engine.

Configuration and allocation errors are fatal and raised before any
simulation starts. Failures of a single item inside a batch (one grid
candidate, one fold, one Monte Carlo run) are caught by the batch executor
and reported per item instead of propagating.
"""


class BacktestException(Exception):
    """Base exception for all backtesting-related errors."""

    pass


class ValidationError(BacktestException):
    """Raised when input validation fails."""

    pass


class InvalidConfigError(ValidationError):
    """Raised when a run configuration is invalid. Never retried."""

    pass


class InvalidAllocationError(ValidationError):
    """Raised when portfolio allocation percentages do not sum to 100."""

    def __init__(self, total: float, tolerance: float = 0.01):
        self.total = total
        self.tolerance = tolerance
        super().__init__(
            f"Portfolio allocations must sum to 100 (+/-{tolerance}), got {total:.4f}"
        )


class DataError(BacktestException):
    """Raised when market data is missing or malformed."""

    pass


class InsufficientDataError(DataError):
    """Raised when there are too few candles to run a simulation."""

    def __init__(self, required: int, actual: int, context: str = "backtest"):
        self.required = required
        self.actual = actual
        self.context = context
        super().__init__(f"Insufficient data for {context}: required={required}, actual={actual}")


class StrategyError(BacktestException):
    """Raised when a signal source fails during a run."""

    pass


class CalculationError(BacktestException):
    """Raised when a numerical routine cannot produce a result."""

    pass


class OptimizationError(BacktestException):
    """Raised when an optimization cannot be carried out."""

    pass


class ParameterSpaceTooLargeError(OptimizationError):
    """Raised when a grid would exceed the allowed number of combinations."""

    def __init__(self, combinations: int, limit: int):
        self.combinations = combinations
        self.limit = limit
        super().__init__(
            f"Parameter space has {combinations} combinations, exceeding the limit of {limit}"
        )


class RunTimeoutError(BacktestException):
    """Raised (and reported per item) when a batched run exceeds its time budget."""

    def __init__(self, index: int, timeout_seconds: float):
        self.index = index
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Run {index} exceeded timeout of {timeout_seconds:.2f}s")


class ResultNotFoundError(DataError):
    """Raised when a stored result id does not exist."""

    def __init__(self, result_id: str):
        self.result_id = result_id
        super().__init__(f"Result not found: {result_id}")
