"""
Utility decorators for run logging.
"""

import functools
import inspect
import time
import uuid
from collections.abc import Callable
from typing import Any, TypeVar

from loguru import logger

F = TypeVar("F", bound=Callable[..., Any])

_CONTEXT_PARAMS = ("symbol", "num_runs", "generations", "population_size", "method")


def _extract_run_context(
    func: Callable[..., Any], args: tuple[Any, ...], kwargs: dict[str, Any]
) -> dict[str, Any]:
    """Pull loggable scalars out of the call arguments."""
    try:
        bound_args = inspect.signature(func).bind(*args, **kwargs)
    except TypeError:
        return {}
    bound_args.apply_defaults()

    context: dict[str, Any] = {}
    for param_name, value in bound_args.arguments.items():
        if param_name == "self":
            continue
        if param_name == "config" and hasattr(value, "symbol"):
            context["symbol"] = str(value.symbol)
        elif param_name == "candles" and hasattr(value, "__len__"):
            context["candles"] = len(value)
        elif param_name in _CONTEXT_PARAMS:
            context[param_name] = str(value)
    return context


def log_run(operation: str, level: str = "INFO") -> Callable[[F], F]:
    """Decorator to log start, completion and failure of a run with a correlation id.

    Args:
        operation: Human readable name of the operation
        level: loguru level used for start/completion messages
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            context = {
                "correlation_id": str(uuid.uuid4())[:8],
                **_extract_run_context(func, args, kwargs),
            }
            run_logger = logger.bind(**context)
            run_logger.log(level, f"{operation} started")
            start_time = time.perf_counter()

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                elapsed_ms = (time.perf_counter() - start_time) * 1000
                run_logger.error(
                    f"{operation} failed after {elapsed_ms:.1f}ms: {type(e).__name__}: {e}"
                )
                raise

            elapsed_ms = (time.perf_counter() - start_time) * 1000
            run_logger.bind(execution_time_ms=round(elapsed_ms, 2)).log(
                level, f"{operation} completed in {elapsed_ms:.1f}ms"
            )
            return result

        return wrapper  # type: ignore

    return decorator
