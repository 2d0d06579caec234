"""
Shared constants and utilities for the OEE engine
=================================================
Keyword-driven classification of free-text downtime reasons into fault
categories, and conversion of those into structured ReasonCodes and machine
states. Used by parse_inputs.py when loading event tables.
"""

import pandas as pd

from assumptions import MachineState, ReasonCode

# ---------------------------------------------------------------------------
# Fault categories
# ---------------------------------------------------------------------------
DATA_GAP = "Data Gap (uncoded)"
SCHEDULED = "Scheduled / Non-Production"
MICRO_STOPS = "Micro Stops"
PROCESS = "Process / Changeover"
EQUIPMENT = "Equipment / Mechanical"
OTHER = "Other / Unclassified"

# ---------------------------------------------------------------------------
# Keyword lists: matched as substrings of the lower-cased reason text
# ---------------------------------------------------------------------------
EQUIPMENT_KEYWORDS = [
    "caser", "palletizer", "conveyor", "tray packer", "shrink tunnel",
    "labeler", "wrapper", "depal", "spiral", "x-ray", "printer",
    "filler", "seamer", "closer", "feeder", "hopper", "accumulator",
    "motor", "bearing", "gearbox", "pump", "valve", "sensor", "jam",
    "breakdown", "failure", "electrical", "hydraulic", "pneumatic",
]

PROCESS_KEYWORDS = [
    "day code", "changeover", "startup", "shutdown", "cip",
    "sanitation", "clean", "setup", "product change", "sku change",
    "adjustment", "tool change",
]

SCHEDULED_KEYWORDS = [
    "not scheduled", "break", "lunch", "meeting", "training",
]

UNCODED_KEYWORDS = ["unassigned", "unknown", "uncoded"]


def classify_fault(reason):
    """Classify a downtime reason into a fault category."""
    if reason is None or pd.isna(reason):
        return DATA_GAP
    r = str(reason).lower().strip()
    if not r or any(kw in r for kw in UNCODED_KEYWORDS):
        return DATA_GAP
    if any(kw in r for kw in SCHEDULED_KEYWORDS):
        return SCHEDULED
    if "short stop" in r or "micro stop" in r:
        return MICRO_STOPS
    if any(kw in r for kw in PROCESS_KEYWORDS):
        return PROCESS
    if any(kw in r for kw in EQUIPMENT_KEYWORDS):
        return EQUIPMENT
    # "Machine - Fault" style codes are equipment faults
    if " - " in r:
        return EQUIPMENT
    return OTHER


def reason_from_text(reason, is_failure=None):
    """Build a two-level ReasonCode (category > reason) from free text.

    Equipment faults count as failures unless the caller says otherwise.
    Blank or uncoded reasons produce an empty path, which validation
    reports as a missing reason code.
    """
    category = classify_fault(reason)
    if is_failure is None:
        is_failure = category == EQUIPMENT
    if category == DATA_GAP:
        return ReasonCode((), bool(is_failure))
    return ReasonCode((category, str(reason).strip()), bool(is_failure))


def state_for_category(category):
    """Machine state a stoppage of this category is allocated to."""
    if category == PROCESS:
        return MachineState.SETUP
    if category == DATA_GAP:
        return MachineState.UNKNOWN
    return MachineState.STOPPED
