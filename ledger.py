"""
Assumption ledger
=================
Append-only audit record behind one analysis: every input value with its
provenance, every threshold in force, every validation warning, plus the
explicit / inferred / default mix. Source statistics are recomputed on every
insertion, so a ledger inspected mid-build is always consistent.

Once the orchestrator seals a ledger, further insertions raise RuntimeError.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Optional

import pandas as pd

from provenance import InputValue, ValueSource
from validation import Severity, ValidationIssue

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ImpactLevel(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class WarningSeverity(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def from_validation(cls, severity: Severity) -> "WarningSeverity":
        return {Severity.FATAL: cls.HIGH, Severity.WARNING: cls.MEDIUM,
                Severity.INFO: cls.LOW}[severity]


@dataclass(frozen=True)
class AssumptionEntry:
    key: str
    description_key: str
    value: Any
    source: ValueSource
    timestamp: datetime
    impact: ImpactLevel
    related: tuple = ()


@dataclass(frozen=True)
class LedgerWarning:
    code: str
    message_key: str
    severity: WarningSeverity
    params: dict = field(default_factory=dict)
    related_assumptions: tuple = ()


@dataclass(frozen=True)
class ThresholdRecord:
    key: str
    value: float
    unit_key: str
    rationale_key: str


@dataclass(frozen=True)
class SourceStatistics:
    explicit_count: int = 0
    inferred_count: int = 0
    default_count: int = 0

    @property
    def total_count(self) -> int:
        return self.explicit_count + self.inferred_count + self.default_count

    def _pct(self, n: int) -> float:
        return n / self.total_count * 100.0 if self.total_count else 0.0

    @property
    def explicit_percentage(self) -> float:
        return self._pct(self.explicit_count)

    @property
    def inferred_percentage(self) -> float:
        return self._pct(self.inferred_count)

    @property
    def default_percentage(self) -> float:
        return self._pct(self.default_count)

    @classmethod
    def from_sources(cls, sources) -> "SourceStatistics":
        sources = list(sources)
        return cls(sources.count(ValueSource.EXPLICIT), sources.count(ValueSource.INFERRED),
                   sources.count(ValueSource.DEFAULT))

    def to_record(self) -> dict[str, Any]:
        return {
            "explicit_count": self.explicit_count,
            "inferred_count": self.inferred_count,
            "default_count": self.default_count,
            "total_count": self.total_count,
            "explicit_percentage": round(self.explicit_percentage, 1),
            "inferred_percentage": round(self.inferred_percentage, 1),
            "default_percentage": round(self.default_percentage, 1),
        }


class AssumptionLedger:
    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or utc_now
        self.analysis_timestamp = self.clock()
        self.assumptions: list[AssumptionEntry] = []
        self.warnings: list[LedgerWarning] = []
        self.thresholds: list[ThresholdRecord] = []
        self.metadata: dict[str, str] = {}
        self.source_statistics = SourceStatistics()
        self._sealed = False

    # -- insertion ---------------------------------------------------------

    def _check_open(self):
        if self._sealed:
            raise RuntimeError("Assumption ledger is sealed; no further entries accepted")

    def add_assumption(self, entry: AssumptionEntry) -> None:
        self._check_open()
        self.assumptions.append(entry)
        self._recalculate_statistics()

    def add_warning(self, warning: LedgerWarning) -> None:
        self._check_open()
        self.warnings.append(warning)
        self._recalculate_statistics()

    def add_threshold(self, threshold: ThresholdRecord) -> None:
        self._check_open()
        self.thresholds.append(threshold)
        self._recalculate_statistics()

    def add_metadata(self, key: str, value: str) -> None:
        self._check_open()
        self.metadata[key] = str(value)

    def _recalculate_statistics(self) -> None:
        self.source_statistics = SourceStatistics.from_sources(a.source for a in self.assumptions)

    def seal(self) -> "AssumptionLedger":
        self._sealed = True
        return self

    @property
    def is_sealed(self) -> bool:
        return self._sealed

    # -- queries -----------------------------------------------------------

    def assumption(self, key: str) -> Optional[AssumptionEntry]:
        for entry in self.assumptions:
            if entry.key == key:
                return entry
        return None

    def critical_assumptions(self) -> list:
        return [a for a in self.assumptions if a.impact is ImpactLevel.CRITICAL]

    def high_severity_warnings(self) -> list:
        return [w for w in self.warnings if w.severity is WarningSeverity.HIGH]

    def default_values_used(self) -> list:
        return [a for a in self.assumptions if a.source is ValueSource.DEFAULT]

    def to_frame(self) -> pd.DataFrame:
        rows = [{
            "key": a.key,
            "description": a.description_key,
            "value": a.value if not isinstance(a.value, dict) else a.value.get("formatted", str(a.value)),
            "source": a.source.value,
            "impact": a.impact.value,
            "related": ", ".join(a.related),
            "timestamp": a.timestamp.isoformat(),
        } for a in self.assumptions]
        return pd.DataFrame(rows, columns=["key", "description", "value", "source",
                                           "impact", "related", "timestamp"])

    def to_record(self) -> dict[str, Any]:
        return {
            "analysis_timestamp": self.analysis_timestamp.isoformat(),
            "assumptions": [{
                "key": a.key,
                "description_key": a.description_key,
                "value": a.value,
                "source": a.source.value,
                "timestamp": a.timestamp.isoformat(),
                "impact": a.impact.value,
                "related": list(a.related),
            } for a in self.assumptions],
            "warnings": [{
                "code": w.code,
                "message_key": w.message_key,
                "severity": w.severity.value,
                "params": dict(w.params),
                "related_assumptions": list(w.related_assumptions),
            } for w in self.warnings],
            "thresholds": [{
                "key": t.key, "value": t.value, "unit_key": t.unit_key,
                "rationale_key": t.rationale_key,
            } for t in self.thresholds],
            "source_statistics": self.source_statistics.to_record(),
            "metadata": dict(self.metadata),
        }


# ---------------------------------------------------------------------------
# Tracking helpers
# ---------------------------------------------------------------------------

def format_duration(duration: timedelta) -> str:
    secs = int(duration.total_seconds())
    hours, rem = divmod(secs, 3600)
    minutes, seconds = divmod(rem, 60)
    if hours > 0:
        return f"{hours}h {minutes}m {seconds}s"
    if minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


class AssumptionTracker:
    """Builds a ledger from InputValues, stamping entries with the ledger clock."""

    def __init__(self, clock: Optional[Clock] = None):
        self.ledger = AssumptionLedger(clock)

    def _entry(self, key, description_key, value, source, impact, related=()):
        self.ledger.add_assumption(AssumptionEntry(
            key=key,
            description_key=description_key,
            value=value,
            source=source,
            timestamp=self.ledger.clock(),
            impact=impact,
            related=tuple(related),
        ))

    def track_duration(self, key: str, description_key: str, value: InputValue,
                       impact: ImpactLevel, related=()) -> None:
        duration = value.value
        self._entry(key, description_key,
                    {"seconds": duration.total_seconds(), "formatted": format_duration(duration)},
                    value.source, impact, related)

    def track_count(self, key: str, description_key: str, value: InputValue,
                    impact: ImpactLevel, related=()) -> None:
        self._entry(key, description_key, value.value, value.source, impact, related)

    def track_band(self, key: str, description_key: str, band: tuple,
                   source: ValueSource, impact: ImpactLevel) -> None:
        low, central, high = band
        self._entry(key, description_key, {"low": low, "central": central, "high": high},
                    source, impact)

    def track_threshold(self, key: str, value: float, unit_key: str, rationale_key: str) -> None:
        self.ledger.add_threshold(ThresholdRecord(key, value, unit_key, rationale_key))

    def add_warning(self, issue: ValidationIssue, related=()) -> None:
        self.ledger.add_warning(LedgerWarning(
            code=issue.code,
            message_key=issue.message_key,
            severity=WarningSeverity.from_validation(issue.severity),
            params=dict(issue.params),
            related_assumptions=tuple(related),
        ))

    def finish(self) -> AssumptionLedger:
        return self.ledger
