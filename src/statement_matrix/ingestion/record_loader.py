"""DataFrame / CSV → MatrixInput."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

from statement_matrix.matrix.models import MatrixInput, MatrixRecord, normalize_category

logger = logging.getLogger(__name__)


def _plain(value: Any) -> Any:
    """numpy/pandas scalars → plain Python; NaN/NaT → None."""
    if value is None:
        return None
    if value is pd.NaT:
        return None
    if isinstance(value, float) and np.isnan(value):
        return None
    if isinstance(value, np.generic):
        value = value.item()
        if isinstance(value, float) and np.isnan(value):
            return None
    if isinstance(value, pd.Timestamp):
        return value.isoformat()
    if pd.api.types.is_scalar(value) and pd.isna(value):
        return None
    return value


def _check_columns(df: pd.DataFrame, names: list[str]) -> None:
    missing = [n for n in names if n not in df.columns]
    if missing:
        raise KeyError(f"DataFrame is missing columns: {', '.join(missing)}")


def records_from_dataframe(
    df: pd.DataFrame,
    row_fields: list[str],
    column_fields: list[str] | None = None,
    value_fields: list[str] | None = None,
    group_field: str | None = None,
    extra_fields: list[str] | None = None,
) -> MatrixInput:
    """Turn one DataFrame row per record into a ``MatrixInput``.

    Args:
        df: Bound data, one record per row.
        row_fields: Columns forming the row tuple, outermost level first.
        column_fields: Columns forming the column tuple.
        value_fields: Measure columns; values stay raw (coercion happens later).
        group_field: Optional column whose value becomes a synthetic root.
        extra_fields: Other columns kept for formatting lookups.

    Raises:
        KeyError: when a named column does not exist.
    """
    column_fields = list(column_fields or [])
    value_fields = list(value_fields or [])
    extra_fields = list(extra_fields or [])
    names = list(row_fields) + column_fields + value_fields + extra_fields
    if group_field:
        names.append(group_field)
    _check_columns(df, names)

    records: list[MatrixRecord] = []
    for raw in df.to_dict(orient="records"):
        group = None
        if group_field:
            group = normalize_category(_plain(raw[group_field]))
        records.append(MatrixRecord(
            row=tuple(normalize_category(_plain(raw[f])) for f in row_fields),
            columns=tuple(normalize_category(_plain(raw[f])) for f in column_fields),
            values={f: _plain(raw[f]) for f in value_fields},
            group=group,
            fields={f: _plain(raw[f]) for f in extra_fields},
        ))

    logger.debug("Loaded %d records from DataFrame (%d columns)", len(records), len(df.columns))
    return MatrixInput(
        records=records,
        row_fields=list(row_fields),
        column_fields=column_fields,
        value_fields=value_fields,
        group_field=group_field,
    )


def records_from_csv(path: str | Path, row_fields: list[str], **kwargs: Any) -> MatrixInput:
    """Read a CSV with pandas and hand it to ``records_from_dataframe``."""
    df = pd.read_csv(path)
    logger.info("Read %d rows from %s", len(df), path)
    return records_from_dataframe(df, row_fields, **kwargs)
