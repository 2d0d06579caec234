"""
Provenance primitives for the OEE engine
========================================
Every scalar that enters a calculation is wrapped in an InputValue that
records how it was obtained (explicit, inferred, default). Confidence is
derived from that tag on demand and propagated with the weakest-link rule.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Callable, Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")


class ValueSource(str, Enum):
    EXPLICIT = "explicit"
    INFERRED = "inferred"
    DEFAULT = "default"


class Confidence(IntEnum):
    """Ordinal trust level. Ordered so that min() picks the weakest."""

    LOW = 1
    MEDIUM = 2
    HIGH = 3

    @property
    def label(self) -> str:
        return self.name.title()


_SOURCE_CONFIDENCE = {
    ValueSource.EXPLICIT: Confidence.HIGH,
    ValueSource.INFERRED: Confidence.MEDIUM,
    ValueSource.DEFAULT: Confidence.LOW,
}


def weakest(*confidences: Confidence) -> Confidence:
    """Weakest-link rule: a derived value is only as trusted as its least trusted input."""
    if not confidences:
        return Confidence.HIGH
    return min(confidences)


@dataclass(frozen=True)
class InputValue(Generic[T]):
    """A value tagged with how it was obtained."""

    value: T
    source: ValueSource = ValueSource.EXPLICIT

    @classmethod
    def explicit(cls, value: T) -> "InputValue[T]":
        return cls(value, ValueSource.EXPLICIT)

    @classmethod
    def inferred(cls, value: T) -> "InputValue[T]":
        return cls(value, ValueSource.INFERRED)

    @classmethod
    def default(cls, value: T) -> "InputValue[T]":
        return cls(value, ValueSource.DEFAULT)

    @property
    def is_explicit(self) -> bool:
        return self.source is ValueSource.EXPLICIT

    @property
    def is_inferred(self) -> bool:
        return self.source is ValueSource.INFERRED

    @property
    def is_default(self) -> bool:
        return self.source is ValueSource.DEFAULT

    @property
    def source_type(self) -> str:
        return self.source.value

    @property
    def confidence(self) -> Confidence:
        # Derived every time; never cached on the instance.
        return _SOURCE_CONFIDENCE[self.source]

    def map(self, fn: Callable[[T], U]) -> "InputValue[U]":
        """Transform the value, keeping the provenance tag."""
        return InputValue(fn(self.value), self.source)


def confidence_of(*values: InputValue) -> Confidence:
    return weakest(*(v.confidence for v in values))


def weakest_source(*values: InputValue) -> ValueSource:
    """Least trusted provenance among the given values (explicit when empty)."""
    if not values:
        return ValueSource.EXPLICIT
    return min(values, key=lambda v: v.confidence).source


# ---------------------------------------------------------------------------
# TrackedMetric: the universal output unit
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TrackedMetric:
    """A computed number together with the formula and inputs behind it."""

    name_key: str
    value: float
    unit_key: str
    formula_key: str
    formula_params: dict[str, float] = field(default_factory=dict)
    confidence: Confidence = Confidence.HIGH

    @property
    def percent(self) -> float:
        return self.value * 100.0

    def to_record(self) -> dict[str, Any]:
        return {
            "name_key": self.name_key,
            "value": self.value,
            "unit_key": self.unit_key,
            "formula_key": self.formula_key,
            "formula_params": dict(self.formula_params),
            "confidence": self.confidence.label,
        }
