"""Tabular export of assignment and validation results."""

from pathlib import Path
from typing import TYPE_CHECKING, Sequence, Union

import pandas as pd
from loguru import logger

from .assignment import Assignment

if TYPE_CHECKING:
    from .runner import RegionMismatch

REPORT_COLUMNS = [
    "record_id",
    "region",
    "method",
    "confidence",
    "extracted_state",
    "name_location",
    "has_coordinates",
    "has_address",
    "rationale",
]

MISMATCH_COLUMNS = ["record_id", "name", "current_region", "expected_region", "reason"]


def assignments_frame(assignments: Sequence[Assignment]) -> pd.DataFrame:
    """One row per assignment, rationale joined into a single column."""
    rows = []
    for assignment in assignments:
        row = assignment.to_dict()
        row["rationale"] = "; ".join(row["rationale"])
        rows.append(row)
    return pd.DataFrame(rows, columns=REPORT_COLUMNS)


def mismatches_frame(mismatches: Sequence["RegionMismatch"]) -> pd.DataFrame:
    return pd.DataFrame([m.to_dict() for m in mismatches], columns=MISMATCH_COLUMNS)


def _write_frame(df: pd.DataFrame, path: Union[str, Path]) -> Path:
    """Write to CSV, or to JSON records when the path ends in .json."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix.lower() == ".json":
        df.to_json(path, orient="records", indent=2)
    else:
        df.to_csv(path, index=False)
    return path


def write_assignment_report(assignments: Sequence[Assignment], path: Union[str, Path]) -> Path:
    """
    Write assignments to CSV or JSON, chosen by the file suffix.

    Returns:
        The path written
    """
    path = _write_frame(assignments_frame(assignments), path)
    logger.success(f"   💾 Wrote {len(assignments)} assignments to {path}")
    return path


def write_mismatch_report(mismatches: Sequence["RegionMismatch"], path: Union[str, Path]) -> Path:
    """Write validation mismatches to CSV or JSON, chosen by the file suffix."""
    path = _write_frame(mismatches_frame(mismatches), path)
    logger.success(f"   💾 Wrote {len(mismatches)} mismatches to {path}")
    return path
