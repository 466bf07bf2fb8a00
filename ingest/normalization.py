"""
Value normalization for extracted shipment rows.

Dates (spreadsheet serials, ISO, numeric and month-name forms), numbers,
shipment statuses, contact strings and PO number lists.
Every function here is total: bad input yields None/empty, never an exception.
"""
import re
import math
import logging
from datetime import datetime, date, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from core.config import get_config

logger = logging.getLogger(__name__)

# 1900 date system: serials >= 61 count from 1899-12-30, serials 1-59 from
# 1899-12-31; serial 60 is the fictitious 1900-02-29
EXCEL_EPOCH = datetime(1899, 12, 30)
EXCEL_EPOCH_BEFORE_LEAP_BUG = datetime(1899, 12, 31)
FICTITIOUS_LEAP_SERIAL = 60
MAX_SERIAL = 2958465  # 9999-12-31

TWO_DIGIT_YEAR_PIVOT = 70

MONTHS = {
    'jan': 1, 'feb': 2, 'mar': 3, 'apr': 4, 'may': 5, 'jun': 6,
    'jul': 7, 'aug': 8, 'sep': 9, 'sept': 9, 'oct': 10, 'nov': 11, 'dec': 12,
}

_TIME = r'(?:[ T]+(\d{1,2}):(\d{2})(?::(\d{2}))?\s*([AaPp][Mm])?)?'
_NUMERIC_DATE_RE = re.compile(r'^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{2,4})' + _TIME + r'$')
_YMD_DATE_RE = re.compile(r'^(\d{4})[/.](\d{1,2})[/.](\d{1,2})' + _TIME + r'$')
_ISO_DATE_RE = re.compile(
    r'^\d{4}-\d{2}-\d{2}(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?)?$'
)
_DAY_MONTH_NAME_RE = re.compile(r'^(\d{1,2})[\s\-/]+([A-Za-z]{3,9})\.?[\s\-/,]+(\d{2,4})' + _TIME + r'$')
_MONTH_NAME_DAY_RE = re.compile(
    r'^([A-Za-z]{3,9})\.?[\s\-/]+(\d{1,2})(?:st|nd|rd|th)?,?[\s\-/]+(\d{2,4})' + _TIME + r'$'
)
_DIGITS_RE = re.compile(r'^\d+(?:\.\d+)?$')

COMPLETED_STATUSES = {'DELIVERED', 'COMPLETED', 'PROCESSED', 'DONE', 'SHIPPED'}
DEFAULT_STATUS = 'AWAITING_STATUS'

_PHONE_CANDIDATE_RE = re.compile(r"\+?\(?\d[\d\s()\-]{6,}\d")
_NAME_PREFIX_RE = re.compile(r'\b(?:MR|MS|MRS|SD|PIC)\b\s*[:.\-]*\s*', re.IGNORECASE)
_LIST_SEPARATOR_RE = re.compile(r'[/\n\r,;|]+')
_PO_VALID_RE = re.compile(r'[A-Za-z0-9].*[A-Za-z0-9]')
_STRICT_PO_RE = re.compile(r'^[A-Za-z0-9_\-]*\d{3,}[A-Za-z0-9_\-]*$')


def is_empty_value(value: Any) -> bool:
    """True for None, NaN and blank strings."""
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def clean_string(value: Any) -> Optional[str]:
    """
    Convert a cell value to a trimmed string.

    Integral floats lose their trailing '.0' (load numbers read as 12345.0).
    """
    if is_empty_value(value):
        return None
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        return value.isoformat()
    text = re.sub(r'[ \t]+', ' ', str(value)).strip()
    return text or None


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

def excel_serial_to_datetime(serial: float) -> Optional[datetime]:
    """
    Convert a spreadsheet serial (1900 date system) to a datetime.

    Serials below 1, above 9999-12-31 or equal to 60 give None.
    The fractional part becomes the time of day, rounded to the second.
    """
    if serial is None or isinstance(serial, bool):
        return None
    try:
        serial = float(serial)
    except (TypeError, ValueError):
        return None
    if math.isnan(serial) or serial < 1 or serial > MAX_SERIAL:
        return None
    if FICTITIOUS_LEAP_SERIAL <= serial < FICTITIOUS_LEAP_SERIAL + 1:
        return None
    epoch = EXCEL_EPOCH if serial >= FICTITIOUS_LEAP_SERIAL else EXCEL_EPOCH_BEFORE_LEAP_BUG
    seconds = round(serial * 86400)
    return epoch + timedelta(seconds=seconds)


def _to_canonical(dt: datetime) -> datetime:
    # Canonical form: naive UTC
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _expand_year(year: int) -> int:
    if year < 100:
        return 2000 + year if year < TWO_DIGIT_YEAR_PIVOT else 1900 + year
    return year


def _apply_time(d: datetime, hour: Optional[str], minute: Optional[str],
                second: Optional[str], meridiem: Optional[str]) -> Optional[datetime]:
    if hour is None:
        return d
    h, m, s = int(hour), int(minute), int(second or 0)
    if meridiem:
        if h < 1 or h > 12:
            return None
        if meridiem.lower() == 'pm' and h != 12:
            h += 12
        elif meridiem.lower() == 'am' and h == 12:
            h = 0
    try:
        return d.replace(hour=h, minute=m, second=s)
    except ValueError:
        return None


def _build_date(year: int, month: int, day: int) -> Optional[datetime]:
    try:
        return datetime(_expand_year(year), month, day)
    except ValueError:
        return None


def resolve_day_month(first: int, second: int, default_order: str = "MDY") -> Optional[Tuple[int, int]]:
    """
    Decide (day, month) for a numeric date whose first two groups are ambiguous.

    A group above 12 can only be the day. When both are <= 12 the configured
    default order wins.

    Returns:
        (day, month) or None when both groups exceed 12
    """
    if first > 12 and second > 12:
        return None
    if first > 12:
        return first, second
    if second > 12:
        return second, first
    if default_order.upper() == "DMY":
        return first, second
    return second, first


def _normalize_iso(text: str) -> str:
    """Rewrite an ISO string into the subset datetime.fromisoformat accepts on 3.10."""
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    text = re.sub(r'(T|\s)(\d{2}:\d{2}\S*?)([+-]\d{2})(\d{2})$', r'\1\2\3:\4', text)
    return re.sub(r'\.(\d+)', lambda m: '.' + (m.group(1) + '000000')[:6], text)


def _parse_date_string(text: str, default_order: str) -> Optional[datetime]:
    if re.fullmatch(r'\d{8}', text):
        return _build_date(int(text[:4]), int(text[4:6]), int(text[6:]))

    if _DIGITS_RE.match(text):
        return excel_serial_to_datetime(float(text))

    if _ISO_DATE_RE.match(text):
        try:
            return datetime.fromisoformat(_normalize_iso(text))
        except ValueError:
            return None

    m = _YMD_DATE_RE.match(text)
    if m:
        d = _build_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        return _apply_time(d, *m.groups()[3:]) if d else None

    m = _NUMERIC_DATE_RE.match(text)
    if m:
        day_month = resolve_day_month(int(m.group(1)), int(m.group(2)), default_order)
        if day_month is None:
            return None
        day, month = day_month
        d = _build_date(int(m.group(3)), month, day)
        return _apply_time(d, *m.groups()[3:]) if d else None

    m = _DAY_MONTH_NAME_RE.match(text)
    if m:
        month = MONTHS.get(m.group(2)[:4].lower()) or MONTHS.get(m.group(2)[:3].lower())
        if month:
            d = _build_date(int(m.group(3)), month, int(m.group(1)))
            return _apply_time(d, *m.groups()[3:]) if d else None

    m = _MONTH_NAME_DAY_RE.match(text)
    if m:
        month = MONTHS.get(m.group(1)[:4].lower()) or MONTHS.get(m.group(1)[:3].lower())
        if month:
            d = _build_date(int(m.group(3)), month, int(m.group(2)))
            return _apply_time(d, *m.groups()[3:]) if d else None

    return None


def parse_date_value(value: Any, default_order: str = "MDY") -> Optional[datetime]:
    """
    Normalize one raw value to a canonical datetime (naive UTC).

    Args:
        value: Cell value (datetime, date, serial number, or string)
        default_order: 'MDY' or 'DMY', applied when day and month are both <= 12

    Returns:
        datetime, or None when the value is empty or unparseable
    """
    if is_empty_value(value) or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        return _to_canonical(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    if isinstance(value, (int, float)):
        result = excel_serial_to_datetime(value)
        if result is None:
            logger.warning(f"[NORMALIZATION] Serial date out of range: {value}")
        return result

    text = str(value).strip()
    result = _parse_date_string(text, default_order)
    if result is None:
        logger.warning(f"[NORMALIZATION] Unparseable date value: '{text}'")
        return None
    return _to_canonical(result)


def extract_date_field(row: Dict[str, Any], field: str, default_order: Optional[str] = None) -> Optional[datetime]:
    """
    Read a field from a row and normalize it to a canonical datetime.

    Args:
        row: Row keyed by field name
        field: Key to read
        default_order: Day/month order for ambiguous numeric dates
            (configuration default when None)

    Returns:
        datetime or None
    """
    if default_order is None:
        default_order = get_config().date_default_order
    return parse_date_value(row.get(field), default_order)


# ---------------------------------------------------------------------------
# Numbers and statuses
# ---------------------------------------------------------------------------

def parse_number(value: Any) -> Optional[float]:
    """
    Parse a numeric cell: '1,250.5 kg' -> 1250.5, '12,5' -> 12.5.

    Returns:
        float or None
    """
    if is_empty_value(value) or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return None if math.isnan(number) or math.isinf(number) else number

    text = re.sub(r'[^\d,.\-]', '', str(value))
    if not re.search(r'\d', text):
        return None

    if ',' in text and '.' in text:
        if text.rfind(',') > text.rfind('.'):
            text = text.replace('.', '').replace(',', '.')
        else:
            text = text.replace(',', '')
    elif ',' in text:
        if re.fullmatch(r'-?\d{1,3}(,\d{3})+', text):
            text = text.replace(',', '')
        else:
            text = text.replace(',', '.')

    try:
        return float(text)
    except ValueError:
        logger.debug(f"[NORMALIZATION] Not a number: '{value}'")
        return None


def normalize_status(value: Any) -> str:
    """
    Normalize a shipment status.

    DELIVERED/COMPLETED/PROCESSED/DONE/SHIPPED -> COMPLETED, IDLE -> PLANNED,
    empty -> AWAITING_STATUS, anything else uppercased.
    """
    text = clean_string(value)
    if not text:
        return DEFAULT_STATUS
    status = text.upper()
    if status in COMPLETED_STATUSES:
        return 'COMPLETED'
    if status == 'IDLE':
        return 'PLANNED'
    return status


# ---------------------------------------------------------------------------
# Contacts and PO numbers
# ---------------------------------------------------------------------------

def _clean_phone(candidate: str) -> Optional[str]:
    digits = re.sub(r'\D', '', candidate)
    if len(digits) < 9 or len(digits) > 15:
        return None
    return ('+' + digits) if candidate.strip().startswith('+') else digits


def looks_like_phone(value: Any) -> bool:
    text = clean_string(value)
    if not text:
        return False
    return any(_clean_phone(c) for c in _PHONE_CANDIDATE_RE.findall(text))


def looks_like_po(value: Any) -> bool:
    """A PO-like token: short alphanumeric code with at least three digits, not a phone number."""
    text = clean_string(value)
    if not text:
        return False
    parts = [p.strip() for p in _LIST_SEPARATOR_RE.split(text) if p.strip()]
    return any(
        _STRICT_PO_RE.match(p) and len(p) <= 20 and not _clean_phone(p)
        for p in parts
    )


def parse_contact_string(value: Any) -> Tuple[Optional[str], Optional[str]]:
    """
    Split a free-text contact cell into names and phone numbers.

    'MR ALI 012-3456789 / PIC SITI (office) 013 9876543'
        -> ('ALI | SITI', '0123456789 | 0139876543')

    Returns:
        (names, phones), each joined with ' | ' or None
    """
    text = clean_string(value)
    if not text:
        return None, None

    phones: List[str] = []
    names_text = text
    for candidate in sorted(_PHONE_CANDIDATE_RE.findall(text), key=len, reverse=True):
        phone = _clean_phone(candidate)
        if phone:
            if phone not in phones:
                phones.append(phone)
            names_text = names_text.replace(candidate, ' ')

    names_text = re.sub(r'\(.*?\)', ' ', names_text)
    names: List[str] = []
    for segment in _LIST_SEPARATOR_RE.split(names_text):
        cleaned = _NAME_PREFIX_RE.sub('', segment)
        cleaned = re.sub(r'[()]', '', cleaned)
        cleaned = re.sub(r'\s{2,}', ' ', cleaned).strip(' -:.')
        if cleaned and not re.fullmatch(r'[\d\s]*', cleaned) and cleaned not in names:
            names.append(cleaned)

    return (' | '.join(names) or None), (' | '.join(phones) or None)


def parse_po_numbers(value: Any) -> List[str]:
    """
    Split a PO cell holding several numbers.

    Parenthesized notes are dropped; parts are split on '/', ',', ';', '|'
    and newlines; duplicates removed, order kept.
    """
    text = clean_string(value)
    if not text:
        return []
    text = re.sub(r'\(.*?\)', '', text)
    result: List[str] = []
    for part in _LIST_SEPARATOR_RE.split(text):
        part = part.strip()
        if part and _PO_VALID_RE.search(part) and part not in result:
            result.append(part)
    return result
