"""
Spreadsheet decoder: first sheet of an uploaded workbook -> list of row dicts.
"""
import os
from io import BytesIO
from zipfile import BadZipFile
from typing import List

import pandas as pd

from partflow.core.config import settings
from partflow.core.errors import ValidationFailed
from partflow.core.logging import get_logger

logger = get_logger(__name__)

EXCEL_EXTENSIONS = {".xlsx", ".xlsm", ".xls"}
CSV_EXTENSIONS = {".csv"}
ALLOWED_EXTENSIONS = EXCEL_EXTENSIONS | CSV_EXTENSIONS

# Data rows are numbered from 2; row 1 holds the headers
FIRST_DATA_ROW = 2


def validate_upload_name(filename: str) -> str:
    if not filename:
        raise ValidationFailed("File name is required", reason="FILE_REQUIRED")
    ext = os.path.splitext(filename)[1].lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise ValidationFailed(
            f"File type not allowed. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}",
            reason="INVALID_FILE_TYPE",
        )
    return ext


def read_first_sheet(content: bytes, filename: str) -> List[dict]:
    """
    Decode the first sheet into header->value dicts in file order.

    Empty cells become None; cell values are otherwise passed through as
    read (numbers, strings, datetimes) for the row normalizers to handle.
    """
    ext = validate_upload_name(filename)
    if len(content) > settings.MAX_UPLOAD_SIZE:
        raise ValidationFailed(
            f"File exceeds maximum size of {settings.MAX_UPLOAD_SIZE} bytes", reason="FILE_TOO_LARGE"
        )

    try:
        if ext in CSV_EXTENSIONS:
            frame = pd.read_csv(BytesIO(content), dtype=object, keep_default_na=False, na_values=[""])
        else:
            frame = pd.read_excel(BytesIO(content), sheet_name=0, dtype=object)
    except (ValueError, KeyError, OSError, BadZipFile, pd.errors.ParserError) as e:
        logger.warning(f"Could not read spreadsheet '{filename}': {e}")
        raise ValidationFailed(f"Could not read spreadsheet: {e}", reason="INVALID_SPREADSHEET")

    if len(frame.index) > settings.PRICE_LIST_MAX_ROWS:
        raise ValidationFailed(
            f"Spreadsheet has {len(frame.index)} rows; at most {settings.PRICE_LIST_MAX_ROWS} are accepted",
            reason="TOO_MANY_ROWS",
        )

    frame = frame.astype(object).where(pd.notna(frame), None)
    frame.columns = [str(column) for column in frame.columns]
    return frame.to_dict(orient="records")
