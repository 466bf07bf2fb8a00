"""
Spreadsheet decoder.

Turns xlsx/xls/csv/tsv bytes into sheets of raw cell rows. No header
detection happens here; the row extractor decides what the first row means.
"""
import csv
import io
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Tuple

import chardet
import pandas as pd

from core.errors import PipelineError

logger = logging.getLogger(__name__)


@dataclass
class Sheet:
    name: str
    index: int
    rows: List[List[Any]] = field(default_factory=list)

    @property
    def non_empty_rows(self) -> int:
        return sum(1 for row in self.rows if any(v is not None for v in row))


def _clean_cell(value: Any) -> Any:
    if value is None or value is pd.NaT:
        return None
    if isinstance(value, pd.Timestamp):
        return None if pd.isna(value) else value.to_pydatetime()
    if isinstance(value, datetime):
        return value
    if isinstance(value, float):
        if math.isnan(value):
            return None
        return int(value) if value.is_integer() else value
    if isinstance(value, str):
        value = value.strip()
        return value or None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    return value


def _frame_to_rows(df: pd.DataFrame) -> List[List[Any]]:
    rows = []
    for record in df.itertuples(index=False, name=None):
        rows.append([_clean_cell(v) for v in record])
    return rows


def detect_encoding(file_content: bytes) -> Tuple[str, float]:
    """
    Detect text encoding: chardet guess first, then utf-8-sig -> utf-8 -> cp1252 -> latin-1.

    Returns:
        Tuple (encoding, confidence)
    """
    result = chardet.detect(file_content[:10000])
    detected = result.get('encoding')
    confidence = result.get('confidence') or 0.0

    candidates = ['utf-8-sig', 'utf-8', 'cp1252', 'latin-1']
    if detected and confidence >= 0.8:
        candidates.insert(0, detected)

    for enc in candidates:
        try:
            file_content.decode(enc)
            logger.debug(f"[EXCEL_PARSER] Encoding detection: {enc} (confidence={confidence:.2f})")
            return enc, confidence
        except (UnicodeDecodeError, LookupError):
            continue

    logger.warning("[EXCEL_PARSER] Encoding detection failed, using latin-1")
    return 'latin-1', 0.0


def detect_delimiter(text: str, default: str = ',') -> str:
    """Detect the CSV delimiter with csv.Sniffer on the first lines."""
    sample_lines = [line for line in text.splitlines()[:10] if line.strip()]
    if not sample_lines:
        return default
    try:
        return csv.Sniffer().sniff('\n'.join(sample_lines[:5]), delimiters=',;\t|').delimiter
    except csv.Error:
        counts = {sep: sample_lines[0].count(sep) for sep in (',', ';', '\t', '|')}
        best = max(counts, key=counts.get)
        return best if counts[best] > 0 else default


def _read_csv(file_content: bytes, ext: str) -> List[Sheet]:
    encoding, _ = detect_encoding(file_content)
    text = file_content.decode(encoding, errors='replace')
    separator = '\t' if ext == 'tsv' else detect_delimiter(text)
    df = pd.read_csv(
        io.StringIO(text),
        sep=separator,
        header=None,
        dtype=object,
        skip_blank_lines=False,
        keep_default_na=False,
        na_values=[''],
    )
    logger.info(f"[EXCEL_PARSER] CSV parsed: encoding={encoding}, sep={separator!r}, {len(df)} rows")
    return [Sheet(name='Sheet1', index=0, rows=_frame_to_rows(df))]


def _read_excel(file_content: bytes) -> List[Sheet]:
    frames = pd.read_excel(io.BytesIO(file_content), sheet_name=None, header=None, dtype=object)
    sheets = []
    for index, (name, df) in enumerate(frames.items()):
        sheets.append(Sheet(name=str(name), index=index, rows=_frame_to_rows(df)))
    logger.info(
        f"[EXCEL_PARSER] Workbook has {len(sheets)} sheets: "
        + ", ".join(f"'{s.name}' ({len(s.rows)} rows)" for s in sheets)
    )
    return sheets


def read_workbook(file_content: bytes, ext: str) -> List[Sheet]:
    """
    Decode a spreadsheet into sheets of raw rows.

    Args:
        file_content: File bytes
        ext: Normalized extension (xlsx, xlsm, xls, csv, tsv)

    Returns:
        Sheets in workbook order; cells are str/int/float/datetime/None

    Raises:
        PipelineError: the bytes cannot be decoded as a spreadsheet
    """
    try:
        if ext in ('csv', 'tsv'):
            return _read_csv(file_content, ext)
        return _read_excel(file_content)
    except Exception as e:
        logger.error(f"[EXCEL_PARSER] Error decoding .{ext} file: {e}")
        raise PipelineError(f"Could not read spreadsheet: {e}", code="unreadable_spreadsheet") from e
