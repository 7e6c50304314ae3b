"""
Parameter space models for optimization.

A parameter is either a discrete value set or a numeric range. Ranges with a
step expand to a grid; ranges without one are continuous and can only be
searched by the genetic optimizer.
"""

import itertools
import math
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from functools import cached_property
from typing import Any

from edgelab.core.exceptions.backtest import InvalidConfigError


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


@dataclass(frozen=True)
class ParameterRange:
    """Search domain of one parameter."""

    name: str
    values: tuple[Any, ...] | None = None
    min: float | None = None
    max: float | None = None
    step: float | None = None

    def __post_init__(self) -> None:
        """Validate the domain after initialization."""
        if not self.name:
            raise InvalidConfigError("Parameter name is required")
        if self.values is not None:
            object.__setattr__(self, "values", tuple(self.values))
            if not self.values:
                raise InvalidConfigError(f"Parameter {self.name} has an empty value set")
            return
        if self.min is None or self.max is None:
            raise InvalidConfigError(f"Parameter {self.name} needs a value set or min/max")
        if self.max < self.min:
            raise InvalidConfigError(f"Parameter {self.name}: max {self.max} < min {self.min}")
        if self.step is not None and self.step <= 0:
            raise InvalidConfigError(f"Parameter {self.name}: step must be positive")

    @property
    def is_discrete(self) -> bool:
        """Check if the parameter expands to a finite grid."""
        return self.values is not None or self.step is not None

    @property
    def is_numeric(self) -> bool:
        """Check if all candidate values are numbers."""
        if self.values is None:
            return True
        return all(_is_number(v) for v in self.values)

    @cached_property
    def grid_values(self) -> tuple[Any, ...]:
        """Every candidate value, in order.

        Raises:
            InvalidConfigError: If the parameter is continuous
        """
        if self.values is not None:
            return self.values
        if self.step is None:
            raise InvalidConfigError(f"Parameter {self.name} is continuous and has no grid")

        count = int(math.floor((self.max - self.min) / self.step + 1e-9)) + 1
        integral = all(float(x).is_integer() for x in (self.min, self.step))
        if integral:
            return tuple(int(self.min + i * self.step) for i in range(count))
        return tuple(round(self.min + i * self.step, 10) for i in range(count))

    @property
    def cardinality(self) -> int:
        """Number of grid values."""
        return len(self.grid_values)

    @property
    def lower(self) -> float:
        """Smallest numeric value of the domain."""
        if self.values is not None:
            return min(self.values)
        return self.min  # type: ignore[return-value]

    @property
    def upper(self) -> float:
        """Largest numeric value of the domain."""
        if self.values is not None:
            return max(self.values)
        return self.max  # type: ignore[return-value]

    def clamp(self, value: float) -> float:
        """Clamp a numeric value into the domain bounds."""
        return max(self.lower, min(self.upper, value))

    def snap(self, value: Any) -> Any:
        """Move a value onto the domain: nearest grid value, or clamped if continuous."""
        if not self.is_discrete:
            return self.clamp(value)
        if not self.is_numeric:
            return value if value in self.grid_values else self.grid_values[0]
        return min(self.grid_values, key=lambda candidate: abs(candidate - value))


@dataclass(frozen=True)
class ParameterSpace:
    """Named parameter domains searched together."""

    ranges: tuple[ParameterRange, ...]

    def __post_init__(self) -> None:
        """Validate the space after initialization."""
        object.__setattr__(self, "ranges", tuple(self.ranges))
        if not self.ranges:
            raise InvalidConfigError("Parameter space must define at least one parameter")
        names = [r.name for r in self.ranges]
        if len(set(names)) != len(names):
            raise InvalidConfigError(f"Duplicate parameter names: {names}")

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(r.name for r in self.ranges)

    def __getitem__(self, name: str) -> ParameterRange:
        for parameter_range in self.ranges:
            if parameter_range.name == name:
                return parameter_range
        raise KeyError(name)

    def __len__(self) -> int:
        return len(self.ranges)

    @property
    def is_discrete(self) -> bool:
        """Check if every parameter expands to a grid."""
        return all(r.is_discrete for r in self.ranges)

    def grid_size(self) -> int:
        """Number of grid combinations (product of cardinalities)."""
        return math.prod(r.cardinality for r in self.ranges)

    def combinations(self) -> Iterator[dict[str, Any]]:
        """Yield every grid combination in a stable order."""
        for combo in itertools.product(*(r.grid_values for r in self.ranges)):
            yield dict(zip(self.names, combo, strict=True))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ParameterSpace":
        """Build a space from ``name -> value list`` or ``name -> {min, max, step}``.

        Lists and tuples are value sets; mappings give min/max/step or "values".
        """
        ranges = []
        for name, spec in data.items():
            if isinstance(spec, ParameterRange):
                ranges.append(spec)
            elif isinstance(spec, Mapping):
                if "values" in spec:
                    ranges.append(ParameterRange(name=name, values=tuple(spec["values"])))
                else:
                    ranges.append(
                        ParameterRange(
                            name=name,
                            min=spec.get("min"),
                            max=spec.get("max"),
                            step=spec.get("step"),
                        )
                    )
            elif isinstance(spec, list | tuple):
                ranges.append(ParameterRange(name=name, values=tuple(spec)))
            else:
                raise InvalidConfigError(f"Unsupported domain for parameter {name}: {spec!r}")
        return cls(ranges=tuple(ranges))
