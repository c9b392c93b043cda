"""
Scan targets that make SQL NULL harmless.

A `NullableField` points at one attribute of a record.  When the database
hands it NULL the attribute keeps whatever it held before (its default, or a
value from a previous row).  Any other value is coerced into the attribute's
declared kind using the table below:

    int, numpy int8..int64, uint8..uint64
        int, bool, integral float/Decimal, numeric text
    float, numpy float32, float64
        int, float, Decimal, numeric text
    bool
        bool, 0/1, and the text values 1/0/t/f/true/false
    str
        text, bytes (utf-8), numbers, bools, dates and datetimes (ISO format)
    datetime.datetime
        datetime only, never parsed from text
    datetime.date
        date or datetime (truncated), never parsed from text

Numpy kinds narrow with wrap-around, so an int8 attribute receiving 300 holds
44.  Values that cannot be coerced, and attributes of any other kind, are left
untouched; scanning never raises.
"""
import datetime
import logging
from collections.abc import Callable
from decimal import Decimal, InvalidOperation
from functools import partial
from typing import Any

import numpy as np

logger = logging.getLogger(__name__)

__all__ = [
    'NullableField',
    'NUMPY_INTEGERS',
    'NUMPY_FLOATS',
    'is_supported_kind',
    'zero_value',
]

NUMPY_INTEGERS = (np.int8, np.int16, np.int32, np.int64,
                  np.uint8, np.uint16, np.uint32, np.uint64)
NUMPY_FLOATS = (np.float32, np.float64)

TRUE_STRINGS = {'1', 't', 'true'}
FALSE_STRINGS = {'0', 'f', 'false'}

_SKIP = object()


def _as_text(src: Any) -> Any:
    """Decode binary sources, leaving everything else alone.
    """
    if isinstance(src, (bytes, bytearray, memoryview)):
        try:
            return bytes(src).decode()
        except UnicodeDecodeError:
            return _SKIP
    return src


def _to_int(src: Any) -> Any:
    src = _as_text(src)
    if isinstance(src, bool):
        return int(src)
    if isinstance(src, int):
        return src
    if isinstance(src, (float, Decimal)):
        try:
            return int(src) if src == int(src) else _SKIP
        except (ValueError, OverflowError, InvalidOperation):
            return _SKIP
    if isinstance(src, str):
        try:
            return int(src.strip())
        except ValueError:
            return _SKIP
    return _SKIP


def _to_float(src: Any) -> Any:
    src = _as_text(src)
    if isinstance(src, bool):
        return _SKIP
    if isinstance(src, (int, float, Decimal)):
        return float(src)
    if isinstance(src, str):
        try:
            return float(src.strip())
        except ValueError:
            return _SKIP
    return _SKIP


def _to_bool(src: Any) -> Any:
    src = _as_text(src)
    if isinstance(src, bool):
        return src
    if isinstance(src, int):
        return bool(src) if src in {0, 1} else _SKIP
    if isinstance(src, str):
        text = src.strip().lower()
        if text in TRUE_STRINGS:
            return True
        if text in FALSE_STRINGS:
            return False
    return _SKIP


def _to_str(src: Any) -> Any:
    src = _as_text(src)
    if isinstance(src, str):
        return src
    if isinstance(src, bool):
        return 'true' if src else 'false'
    if isinstance(src, (int, float, Decimal)):
        return str(src)
    if isinstance(src, (datetime.date, datetime.time)):
        return src.isoformat()
    return _SKIP


def _to_datetime(src: Any) -> Any:
    if isinstance(src, datetime.datetime):
        return src
    return _SKIP


def _to_date(src: Any) -> Any:
    if isinstance(src, datetime.datetime):
        return src.date()
    if isinstance(src, datetime.date):
        return src
    return _SKIP


def _narrow_int(kind: type, src: Any) -> Any:
    value = _to_int(src)
    if value is _SKIP:
        return _SKIP
    try:
        return np.int64(value).astype(kind)
    except OverflowError:
        return _SKIP


def _narrow_float(kind: type, src: Any) -> Any:
    value = _to_float(src)
    if value is _SKIP:
        return _SKIP
    return kind(value)


COERCIONS: dict[type, Callable[[Any], Any]] = {
    int: _to_int,
    float: _to_float,
    bool: _to_bool,
    str: _to_str,
    datetime.datetime: _to_datetime,
    datetime.date: _to_date,
    }
COERCIONS.update({kind: partial(_narrow_int, kind) for kind in NUMPY_INTEGERS})
COERCIONS.update({kind: partial(_narrow_float, kind) for kind in NUMPY_FLOATS})


def is_supported_kind(kind: Any) -> bool:
    """Check whether NULL-aware scanning knows how to fill this kind.
    """
    return kind in COERCIONS


def zero_value(kind: Any) -> Any:
    """Return the zero value for a kind, or None when it has no natural zero.
    """
    if kind in COERCIONS and kind not in {datetime.datetime, datetime.date}:
        return kind()
    return None


class NullableField:
    """Scan target for a single record attribute.
    """

    def __init__(self, record: Any, attr: str, kind: Any) -> None:
        self.record = record
        self.attr = attr
        self.kind = kind

    def __repr__(self) -> str:
        return f'NullableField({type(self.record).__name__}.{self.attr})'

    @property
    def value(self) -> Any:
        """Current value of the attribute this target writes to.
        """
        return getattr(self.record, self.attr)

    def scan(self, src: Any) -> None:
        """Store `src` into the attribute unless it is NULL or unconvertible.
        """
        if src is None:
            return

        convert = COERCIONS.get(self.kind)
        if convert is None:
            logger.debug(f'No coercion for {self.kind!r}; leaving {self.attr} unchanged')
            return

        value = convert(src)
        if value is _SKIP:
            logger.debug(f'Could not coerce {src!r} into {self.kind!r} for {self.attr}')
            return
        setattr(self.record, self.attr, value)
