"""
Spreadsheet encoding of an export result (headings + rows -> bytes).
"""
from __future__ import annotations

import datetime
import io
from typing import Any, Sequence

import pandas as pd

from export_builder.core.logging import get_logger
from export_builder.core.utils import slugify

logger = get_logger(__name__)

MEDIA_TYPES = {
    "csv": "text/csv; charset=utf-8",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "xls": "application/vnd.ms-excel",
}

_MAX_WIDTH = 50


def normalize_format(fmt: str | None) -> str:
    """``csv`` / ``xls`` / ``xlsx``; anything else falls back to ``xlsx``."""
    fmt = (fmt or "xlsx").lower()
    return fmt if fmt in MEDIA_TYPES else "xlsx"


def _cell(value: Any) -> Any:
    # list-mode aggregates have no spreadsheet representation of their own
    if isinstance(value, (list, tuple, set)):
        return ", ".join(str(v) for v in value)
    return value


def to_frame(headings: Sequence[str], rows: Sequence[Sequence[Any]]) -> pd.DataFrame:
    return pd.DataFrame([[_cell(v) for v in row] for row in rows], columns=list(headings))


def _to_xlsx(frame: pd.DataFrame, sheet_name: str) -> bytes:
    buf = io.BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        frame.to_excel(writer, index=False, sheet_name=sheet_name)
        sheet = writer.sheets[sheet_name]
        for cells in sheet.columns:
            width = max(len(str(c.value if c.value is not None else "")) for c in cells)
            sheet.column_dimensions[cells[0].column_letter].width = min(width + 2, _MAX_WIDTH)
    return buf.getvalue()


def encode(headings: Sequence[str], rows: Sequence[Sequence[Any]], fmt: str | None = "xlsx",
           sheet_name: str = "Export") -> bytes:
    fmt = normalize_format(fmt)
    frame = to_frame(headings, rows)

    if fmt == "csv":
        return frame.to_csv(index=False).encode("utf-8")
    if fmt == "xls":
        logger.warning("Legacy xls writer unavailable; serving an xlsx workbook")
    return _to_xlsx(frame, sheet_name[:31] or "Export")


def build_filename(page: str, filename: str | None = None, timestamp: str | None = None,
                   fmt: str | None = "xlsx") -> str:
    """``slug("{filename or page}_{timestamp}") + "." + ext``."""
    timestamp = timestamp or datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
    return f"{slugify(f'{filename or page}_{timestamp}')}.{normalize_format(fmt)}"
