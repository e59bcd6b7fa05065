"""Typed columns for building literal SQL and casting result values.

Every value observed on the monitored server (query text, application
names, client addresses) reaches the history tables through these helpers,
never through ad hoc string formatting. A ``ColumnType`` is a scalar kind,
optionally wrapped as a one-dimensional array; each kind has exactly one
serializer and one caster, so adding a kind means adding one entry to each
table below.
"""

from __future__ import annotations

import ipaddress
import math
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict


class ScalarKind(str, Enum):
    """Scalar column kinds; the value is the PostgreSQL type name."""

    SMALLINT = "smallint"
    INTEGER = "integer"
    BIGINT = "bigint"
    DECIMAL = "numeric"
    FLOAT = "double precision"
    BOOLEAN = "boolean"
    DATE = "date"
    TIME = "time"
    DATETIME = "timestamptz"
    TEXT = "text"
    STRING = "varchar"
    INET = "inet"


_INT_RANGES = {
    ScalarKind.SMALLINT: (-(2**15), 2**15 - 1),
    ScalarKind.INTEGER: (-(2**31), 2**31 - 1),
    ScalarKind.BIGINT: (-(2**63), 2**63 - 1),
}

_TRUE_STRINGS = frozenset({"t", "true", "y", "yes", "on", "1"})
_FALSE_STRINGS = frozenset({"f", "false", "n", "no", "off", "0"})


def quote_ident(name: str) -> str:
    """Double-quote a single identifier."""
    name = str(name)
    if not name:
        raise ValueError("Identifier must not be empty")
    if "\x00" in name:
        raise ValueError("Identifier must not contain NUL characters")
    return '"' + name.replace('"', '""') + '"'


def quote_table_name(name: str) -> str:
    """Quote a possibly schema-qualified table name, one part at a time."""
    return ".".join(quote_ident(part) for part in str(name).split("."))


def quote_literal(text: str) -> str:
    """Quote text as a string constant.

    Backslashes switch to the E'' form with doubled backslashes so the
    result means the same thing whatever standard_conforming_strings is.
    """
    if "\x00" in text:
        raise ValueError("PostgreSQL text cannot contain NUL characters")
    escaped = text.replace("'", "''")
    if "\\" in escaped:
        return "E'" + escaped.replace("\\", "\\\\") + "'"
    return "'" + escaped + "'"


# --- serializers: Python value -> int | bool | str ---


def _serialize_int(kind: ScalarKind, value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"Boolean {value!r} is not a valid {kind.value}")
    if isinstance(value, str):
        result = int(value.strip())
    elif isinstance(value, Decimal):
        if not value.is_finite() or value != value.to_integral_value():
            raise ValueError(f"{value!r} is not an integral {kind.value}")
        result = int(value)
    elif isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"{value!r} is not an integral {kind.value}")
        result = int(value)
    else:
        result = int(value)
    low, high = _INT_RANGES[kind]
    if not low <= result <= high:
        raise ValueError(f"{result} is out of range for {kind.value}")
    return result


def _serialize_decimal(kind: ScalarKind, value: Any) -> str:
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValueError(f"{value!r} is not a valid {kind.value}") from e
    if number.is_nan():
        return "NaN"
    if number.is_infinite():
        return "Infinity" if number > 0 else "-Infinity"
    return str(number)


def _serialize_float(kind: ScalarKind, value: Any) -> str:
    number = float(value)
    if math.isnan(number):
        return "NaN"
    if math.isinf(number):
        return "Infinity" if number > 0 else "-Infinity"
    return repr(number)


def _serialize_bool(kind: ScalarKind, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ValueError(f"{value!r} is not a valid boolean")


def _serialize_date(kind: ScalarKind, value: Any) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return date.fromisoformat(str(value).strip()).isoformat()


def _serialize_time(kind: ScalarKind, value: Any) -> str:
    if isinstance(value, time):
        return value.isoformat()
    return time.fromisoformat(str(value).strip()).isoformat()


def _serialize_datetime(kind: ScalarKind, value: Any) -> str:
    # Always carries an explicit offset
    return _cast_datetime(value).isoformat(sep=" ")


def _serialize_text(kind: ScalarKind, value: Any) -> str:
    return value if isinstance(value, str) else str(value)


def _serialize_inet(kind: ScalarKind, value: Any) -> str:
    if isinstance(
        value,
        (ipaddress.IPv4Address, ipaddress.IPv6Address, ipaddress.IPv4Interface, ipaddress.IPv6Interface),
    ):
        return str(value)
    text = str(value).strip()
    if "/" in text:
        return str(ipaddress.ip_interface(text))
    return str(ipaddress.ip_address(text))


_SERIALIZERS: dict[ScalarKind, Callable[[ScalarKind, Any], Any]] = {
    ScalarKind.SMALLINT: _serialize_int,
    ScalarKind.INTEGER: _serialize_int,
    ScalarKind.BIGINT: _serialize_int,
    ScalarKind.DECIMAL: _serialize_decimal,
    ScalarKind.FLOAT: _serialize_float,
    ScalarKind.BOOLEAN: _serialize_bool,
    ScalarKind.DATE: _serialize_date,
    ScalarKind.TIME: _serialize_time,
    ScalarKind.DATETIME: _serialize_datetime,
    ScalarKind.TEXT: _serialize_text,
    ScalarKind.STRING: _serialize_text,
    ScalarKind.INET: _serialize_inet,
}


# --- casters: driver result value -> Python value ---


def _cast_int(value: Any) -> int:
    return int(value)


def _cast_decimal(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _cast_float(value: Any) -> float:
    return float(value)


def _cast_bool(value: Any) -> bool:
    return _serialize_bool(ScalarKind.BOOLEAN, value)


def _cast_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip())


def _cast_time(value: Any) -> time:
    if isinstance(value, time):
        return value
    return time.fromisoformat(str(value).strip())


def _cast_datetime(value: Any) -> datetime:
    """timestamptz value; naive input is UTC (sessions run with TimeZone=UTC)."""
    if isinstance(value, datetime):
        result = value
    elif isinstance(value, date):
        result = datetime.combine(value, time())
    else:
        result = datetime.fromisoformat(str(value).strip())
    if result.tzinfo is None:
        result = result.replace(tzinfo=timezone.utc)
    return result


def _cast_text(value: Any) -> str:
    return value if isinstance(value, str) else str(value)


_CASTERS: dict[ScalarKind, Callable[[Any], Any]] = {
    ScalarKind.SMALLINT: _cast_int,
    ScalarKind.INTEGER: _cast_int,
    ScalarKind.BIGINT: _cast_int,
    ScalarKind.DECIMAL: _cast_decimal,
    ScalarKind.FLOAT: _cast_float,
    ScalarKind.BOOLEAN: _cast_bool,
    ScalarKind.DATE: _cast_date,
    ScalarKind.TIME: _cast_time,
    ScalarKind.DATETIME: _cast_datetime,
    ScalarKind.TEXT: _cast_text,
    ScalarKind.STRING: _cast_text,
    ScalarKind.INET: _cast_text,
}


def parse_array_literal(text: str) -> list[str | None]:
    """Parse a one-dimensional PostgreSQL array literal into element strings.

    ``{1,NULL,"a,b"}`` -> ``["1", None, "a,b"]``. ODBC drivers hand arrays
    back in this text form.
    """
    text = text.strip()
    if text.startswith("["):
        # Non-default lower bound, e.g. "[0:1]={1,2}"
        text = text[text.index("=") + 1 :].strip()
    if not (text.startswith("{") and text.endswith("}")):
        raise ValueError(f"Not an array literal: {text!r}")
    body = text[1:-1]
    if not body.strip():
        return []

    items: list[str | None] = []
    buf: list[str] = []
    quoted = False
    in_quotes = False
    escape = False
    for ch in body:
        if escape:
            buf.append(ch)
            escape = False
        elif ch == "\\":
            escape = True
        elif ch == '"':
            in_quotes = not in_quotes
            quoted = True
        elif in_quotes:
            buf.append(ch)
        elif ch == ",":
            items.append(_array_element(buf, quoted))
            buf = []
            quoted = False
        elif ch in "{}":
            raise ValueError("Multi-dimensional arrays are not supported")
        elif ch.isspace() and (quoted or not buf):
            continue
        else:
            buf.append(ch)
    if in_quotes or escape:
        raise ValueError(f"Unterminated array literal: {text!r}")
    items.append(_array_element(buf, quoted))
    return items


def _array_element(buf: list[str], quoted: bool) -> str | None:
    value = "".join(buf)
    if quoted:
        return value
    value = value.strip()
    return None if value.upper() == "NULL" else value


def _array_element_literal(serialized: Any) -> str:
    if serialized is None:
        return "NULL"
    if isinstance(serialized, bool):
        return "t" if serialized else "f"
    if isinstance(serialized, int):
        return str(serialized)
    return '"' + serialized.replace("\\", "\\\\").replace('"', '\\"') + '"'


class ColumnType(BaseModel):
    """A scalar kind, or a one-dimensional array of it."""

    model_config = ConfigDict(frozen=True)

    kind: ScalarKind
    array: bool = False

    @property
    def sql_type(self) -> str:
        return f"{self.kind.value}[]" if self.array else self.kind.value

    def serialize(self, value: Any) -> Any:
        """Validate and convert a value to its canonical int, bool or text form."""
        if value is None:
            return None
        serializer = _SERIALIZERS[self.kind]
        if not self.array:
            return serializer(self.kind, value)
        if isinstance(value, (str, bytes)) or not hasattr(value, "__iter__"):
            raise ValueError(f"{self.sql_type} value must be a list, got {type(value).__name__}")
        elements = []
        for element in value:
            if isinstance(element, (list, tuple)):
                raise ValueError("Multi-dimensional arrays are not supported")
            elements.append(None if element is None else serializer(self.kind, element))
        return elements

    def quote(self, value: Any) -> str:
        """Serialize a value and render it as a SQL literal (``NULL`` for None)."""
        serialized = self.serialize(value)
        if serialized is None:
            return "NULL"
        if self.array:
            literal = "{" + ",".join(_array_element_literal(e) for e in serialized) + "}"
            return f"{quote_literal(literal)}::{self.sql_type}"
        if isinstance(serialized, bool):
            return "TRUE" if serialized else "FALSE"
        if isinstance(serialized, int):
            return str(serialized)
        return quote_literal(serialized)

    def cast(self, value: Any) -> Any:
        """Convert a value read back from the driver into its Python form."""
        if value is None:
            return None
        caster = _CASTERS[self.kind]
        if not self.array:
            return caster(value)
        elements = parse_array_literal(value) if isinstance(value, str) else value
        return [None if element is None else caster(element) for element in elements]


class TypedColumn(BaseModel):
    """A named column with a serialization and quoting contract."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: ColumnType

    def quote_name(self) -> str:
        return quote_ident(self.name)

    def quote_value(self, value: Any) -> str:
        try:
            return self.type.quote(value)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid value for column {self.name!r} ({self.type.sql_type}): {e}") from e

    def cast(self, value: Any) -> Any:
        return self.type.cast(value)


SMALLINT = ColumnType(kind=ScalarKind.SMALLINT)
INTEGER = ColumnType(kind=ScalarKind.INTEGER)
BIGINT = ColumnType(kind=ScalarKind.BIGINT)
DECIMAL = ColumnType(kind=ScalarKind.DECIMAL)
FLOAT = ColumnType(kind=ScalarKind.FLOAT)
BOOLEAN = ColumnType(kind=ScalarKind.BOOLEAN)
DATE = ColumnType(kind=ScalarKind.DATE)
TIME = ColumnType(kind=ScalarKind.TIME)
DATETIME = ColumnType(kind=ScalarKind.DATETIME)
TEXT = ColumnType(kind=ScalarKind.TEXT)
STRING = ColumnType(kind=ScalarKind.STRING)
INET = ColumnType(kind=ScalarKind.INET)
INTEGER_ARRAY = ColumnType(kind=ScalarKind.INTEGER, array=True)
BIGINT_ARRAY = ColumnType(kind=ScalarKind.BIGINT, array=True)

# A transaction id as reported by pg_stat_activity is a 32-bit unsigned value
# that wraps; it is stored widened to BIGINT so it never goes negative. This is
# not a 64-bit epoch-qualified txid.
XID = BIGINT


def column_list(**columns: ColumnType) -> tuple[TypedColumn, ...]:
    """Build an ordered, immutable column list from name=type keywords."""
    return tuple(TypedColumn(name=name, type=column_type) for name, column_type in columns.items())
