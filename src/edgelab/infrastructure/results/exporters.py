"""
Result export to CSV and JSON.

Exporters only read results; nothing they produce shares state with the
stored result.
"""

import io
import json
import math
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol

import pandas as pd
from loguru import logger

from edgelab.core.exceptions.backtest import InvalidConfigError
from edgelab.core.models.backtest import BacktestResult

SUPPORTED_FORMATS = ("csv", "json")


class SupportsToDict(Protocol):
    def to_dict(self) -> dict[str, Any]: ...


def json_safe(value: Any) -> Any:
    """Copy ``value`` with infinities as "Infinity"/"-Infinity" and NaN as None."""
    if isinstance(value, float):
        if math.isnan(value):
            return None
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        return value
    if isinstance(value, Mapping):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_safe(v) for v in value]
    return value


def to_json(result: SupportsToDict, indent: int | None = 2) -> str:
    """Serialize any result exposing ``to_dict`` as strict JSON."""
    return json.dumps(json_safe(result.to_dict()), indent=indent, allow_nan=False, default=str)


def _section(title: str, frame: pd.DataFrame) -> str:
    buffer = io.StringIO()
    buffer.write(f"# {title}\n")
    frame.to_csv(buffer, index=False, lineterminator="\n")
    return buffer.getvalue()


def _key_values(values: Mapping[str, Any]) -> pd.DataFrame:
    flat = {}
    for key, value in values.items():
        if isinstance(value, Mapping):
            flat.update({f"{key}.{k}": v for k, v in value.items()})
        else:
            flat[key] = value
    return pd.DataFrame({"metric": list(flat), "value": [json_safe(v) for v in flat.values()]})


def to_csv(result: BacktestResult) -> str:
    """Sectioned CSV: summary, trade stats, risk metrics, trades and equity curve."""
    data = result.to_dict()
    trades = pd.DataFrame(data["trades"])
    if trades.empty:
        trades = pd.DataFrame(columns=["id", "symbol", "side", "entryPrice", "exitPrice", "pnl"])
    equity = pd.DataFrame(data["equityCurve"], columns=["timestamp", "equity"])
    drawdown = pd.DataFrame(data["drawdownCurve"], columns=["timestamp", "drawdown"])
    curve = equity.merge(drawdown, on="timestamp", how="left")

    sections = [
        _section("Summary", _key_values(data["summary"])),
        _section("Trade Statistics", _key_values(data["tradeStats"])),
        _section("Risk Metrics", _key_values(data["riskMetrics"])),
        _section("Trades", trades),
        _section("Equity Curve", curve),
    ]
    return "\n".join(sections)


def export_result(result: BacktestResult, path: str | Path, fmt: str | None = None) -> Path:
    """
    Write ``result`` to ``path``.

    Args:
        result: Result to export
        path: Destination file
        fmt: "csv" or "json"; taken from the file suffix when omitted

    Raises:
        InvalidConfigError: If the format is not supported
    """
    target = Path(path)
    fmt = (fmt or target.suffix.lstrip(".")).lower()
    if fmt not in SUPPORTED_FORMATS:
        raise InvalidConfigError(
            f"Unsupported export format '{fmt}'. Supported: {', '.join(SUPPORTED_FORMATS)}"
        )
    content = to_csv(result) if fmt == "csv" else to_json(result)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")
    logger.info(f"Exported {result.config.symbol} result to {target} ({fmt})")
    return target
