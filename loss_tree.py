"""
Six-big-losses decomposition
============================
Attributes planned production time to named loss buckets:

  Planned time
    Availability losses   breakdowns, setup & adjustments
    Performance losses    small stops, speed losses
    Quality losses        startup rejects, production rejects

This is attribution, not causality: each bucket says how much time it
consumed, never why. Built in two passes: nodes are assembled with their
share of planned time, then finalize() stamps the share of each parent.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional

import pandas as pd

from assumptions import MachineState, OeeInput, ZERO
from provenance import ValueSource, weakest_source


@dataclass
class LossTreeNode:
    category_key: str
    description_key: str
    duration: timedelta
    percentage_of_planned: float
    source: ValueSource = ValueSource.INFERRED
    percentage_of_parent: Optional[float] = None
    children: list = field(default_factory=list)

    @classmethod
    def make(cls, name: str, duration: timedelta, planned: timedelta,
             source: ValueSource, children=None) -> "LossTreeNode":
        share = duration / planned if planned > ZERO else 0.0
        return cls(
            category_key=f"loss_tree.{name}",
            description_key=f"loss_tree.{name}_desc",
            duration=duration,
            percentage_of_planned=share,
            source=source,
            children=list(children or []),
        )

    def finalize(self) -> None:
        """Stamp percentage_of_parent on every descendant, top-down."""
        for child in self.children:
            child.percentage_of_parent = (
                child.duration / self.duration if self.duration > ZERO else 0.0
            )
            child.finalize()

    def children_duration(self) -> timedelta:
        return sum((c.duration for c in self.children), ZERO)


@dataclass
class LossTree:
    root: LossTreeNode
    planned_time: timedelta

    def flatten(self) -> list:
        """Depth-first list of (depth, node)."""
        out = []

        def _walk(node, depth):
            out.append((depth, node))
            for child in node.children:
                _walk(child, depth + 1)

        _walk(self.root, 0)
        return out

    def find(self, category_key: str) -> Optional[LossTreeNode]:
        if not category_key.startswith("loss_tree."):
            category_key = f"loss_tree.{category_key}"
        for _, node in self.flatten():
            if node.category_key == category_key:
                return node
        return None

    def to_frame(self) -> pd.DataFrame:
        rows = []
        for depth, node in self.flatten():
            rows.append({
                "depth": depth,
                "category": node.category_key,
                "duration_seconds": node.duration.total_seconds(),
                "duration_hours": round(node.duration.total_seconds() / 3600, 3),
                "pct_of_planned": node.percentage_of_planned,
                "pct_of_parent": node.percentage_of_parent,
                "source": node.source.value,
            })
        return pd.DataFrame(rows)

    def to_record(self) -> dict[str, Any]:
        def _node(n):
            return {
                "category": n.category_key,
                "description": n.description_key,
                "duration_seconds": n.duration.total_seconds(),
                "percentage_of_planned": n.percentage_of_planned,
                "percentage_of_parent": n.percentage_of_parent,
                "source": n.source.value,
                "children": [_node(c) for c in n.children],
            }
        return _node(self.root)


# ---------------------------------------------------------------------------
# Loss quantities
# ---------------------------------------------------------------------------

def _records_total(records) -> timedelta:
    return sum((r.duration.value for r in records), ZERO)


def breakdown_records(oee_input: OeeInput) -> list:
    return oee_input.downtimes.failures()


def small_stop_records(oee_input: OeeInput) -> list:
    threshold = oee_input.thresholds.small_stop_threshold
    return [r for r in oee_input.downtimes
            if not r.reason.is_failure and r.duration.value < threshold]


def setup_allocations(oee_input: OeeInput) -> list:
    return oee_input.time_model.allocations_in_state(MachineState.SETUP)


def speed_loss_time(oee_input: OeeInput) -> timedelta:
    ideal = oee_input.cycle_time.ideal_cycle_time.value
    if ideal <= ZERO:
        return ZERO
    ideal_production = ideal * oee_input.production.total_units.value
    return max(ZERO, oee_input.time_model.running_time() - ideal_production)


def production_reject_time(oee_input: OeeInput) -> timedelta:
    """Time-equivalent of scrapped output at ideal speed."""
    return oee_input.cycle_time.ideal_cycle_time.value * oee_input.production.scrap_units.value


# ---------------------------------------------------------------------------
# Build
# ---------------------------------------------------------------------------

def build_loss_tree(oee_input: OeeInput) -> LossTree:
    planned_iv = oee_input.time_model.planned_production_time
    planned = planned_iv.value

    def leaf(name, duration, source):
        return LossTreeNode.make(name, duration, planned, source)

    def group(name, children):
        duration = sum((c.duration for c in children), ZERO)
        return LossTreeNode.make(name, duration, planned, ValueSource.INFERRED, children)

    breakdowns = breakdown_records(oee_input)
    setups = setup_allocations(oee_input)
    small_stops = small_stop_records(oee_input)

    availability = group("availability_losses", [
        leaf("breakdowns", _records_total(breakdowns),
             weakest_source(*(r.duration for r in breakdowns))),
        leaf("setup_adjustments", sum((a.duration.value for a in setups), ZERO),
             weakest_source(*(a.duration for a in setups))),
    ])
    performance = group("performance_losses", [
        leaf("small_stops", _records_total(small_stops),
             weakest_source(*(r.duration for r in small_stops))),
        leaf("speed_losses", speed_loss_time(oee_input), ValueSource.INFERRED),
    ])
    quality = group("quality_losses", [
        # No temporal breakdown of rejects is modelled; always zero.
        leaf("startup_rejects", ZERO, ValueSource.DEFAULT),
        leaf("production_rejects", production_reject_time(oee_input), ValueSource.INFERRED),
    ])

    root = LossTreeNode.make("planned_time", planned, planned, planned_iv.source,
                             [availability, performance, quality])
    root.finalize()
    return LossTree(root=root, planned_time=planned)
