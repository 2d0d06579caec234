"""Dataframe normalization utilities for downtime event tables."""

import re

import pandas as pd


# Maps normalized header names found in event exports to internal column names.
HEADER_TO_INTERNAL = {
    # Reason
    "reason": "reason",
    "reasoncode": "reason",
    "reasonname": "reason",
    "downtimereason": "reason",
    "event": "reason",
    "eventcategory": "reason",
    "cause": "reason",
    "fault": "reason",
    "category": "category",
    "faultcategory": "category",
    # Duration
    "duration": "duration_seconds",
    "durationsec": "duration_seconds",
    "durationseconds": "duration_seconds",
    "seconds": "duration_seconds",
    "secs": "duration_seconds",
    "durationmin": "duration_minutes",
    "durationminutes": "duration_minutes",
    "minutes": "duration_minutes",
    "mins": "duration_minutes",
    "timemin": "duration_minutes",
    "downtimeminutes": "duration_minutes",
    "durationhours": "duration_hours",
    "hours": "duration_hours",
    # Flags / context
    "isfailure": "is_failure",
    "failure": "is_failure",
    "breakdown": "is_failure",
    "timestamp": "timestamp",
    "starttime": "timestamp",
    "start": "timestamp",
    "eventstart": "timestamp",
    "notes": "notes",
    "comment": "notes",
    "comments": "notes",
}

NUMERIC_COLUMNS = {"duration_seconds", "duration_minutes", "duration_hours"}

EVENT_COLUMNS = ["reason", "duration_seconds", "is_failure", "timestamp", "notes"]

TRUE_STRINGS = {"true", "yes", "y", "1", "x"}


def _collapse_duplicate_columns(df):
    """Merge duplicate-named columns by taking the first non-null value per row."""
    if not df.columns.duplicated().any():
        return df

    out = pd.DataFrame(index=df.index)
    seen = set()
    for col in df.columns:
        if col in seen:
            continue
        seen.add(col)
        data = df.loc[:, df.columns == col]
        if isinstance(data, pd.DataFrame) and data.shape[1] > 1:
            out[col] = data.bfill(axis=1).iloc[:, 0]
        else:
            out[col] = data.iloc[:, 0] if isinstance(data, pd.DataFrame) else data
    return out


def normalize_col(name):
    """Normalize a column header for fuzzy matching."""
    s = str(name).lower().strip()
    return re.sub(r"[^a-z0-9]+", "", s)


def smart_rename(df):
    """Rename event-table columns by header matching; first match wins."""
    header_map = {}
    claimed = set()
    for col in df.columns:
        internal = HEADER_TO_INTERNAL.get(normalize_col(col))
        if internal and internal not in claimed:
            header_map[col] = internal
            claimed.add(internal)

    if "reason" not in claimed and "category" not in claimed:
        raise ValueError(
            f"Cannot find a reason column in downtime events "
            f"(got {', '.join(str(c) for c in df.columns[:8])})"
        )
    if not claimed & NUMERIC_COLUMNS:
        raise ValueError(
            f"Cannot find a duration column in downtime events "
            f"(got {', '.join(str(c) for c in df.columns[:8])})"
        )
    return df.rename(columns=header_map)


def coerce_numerics(df):
    """Ensure columns that should be numeric are actually numeric."""
    df = _collapse_duplicate_columns(df)
    for col in df.columns:
        if col in NUMERIC_COLUMNS:
            df[col] = pd.to_numeric(df[col], errors="coerce").fillna(0)
    return df


def _as_flag(value):
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in TRUE_STRINGS


def derive_columns(df):
    """Fill duration_seconds from minutes/hours and tidy the optional columns."""
    df = _collapse_duplicate_columns(df)
    if "duration_seconds" not in df.columns:
        if "duration_minutes" in df.columns:
            df["duration_seconds"] = df["duration_minutes"] * 60.0
        else:
            df["duration_seconds"] = df["duration_hours"] * 3600.0

    if "reason" not in df.columns:
        df["reason"] = df["category"]

    if "is_failure" in df.columns:
        df["is_failure"] = df["is_failure"].apply(_as_flag)
    else:
        df["is_failure"] = None

    if "timestamp" in df.columns:
        df["timestamp"] = pd.to_datetime(df["timestamp"], errors="coerce")
    else:
        df["timestamp"] = pd.NaT

    if "notes" not in df.columns:
        df["notes"] = None
    return df


def normalize_events(df):
    """Full pipeline: rename, coerce, derive, and keep the event columns."""
    df = smart_rename(df.copy())
    df = coerce_numerics(df)
    df = derive_columns(df)
    return df[EVENT_COLUMNS].reset_index(drop=True)
