from __future__ import annotations

import datetime
import json
import logging
import math
import re
import urllib.parse
from collections.abc import Mapping, Sequence
from fractions import Fraction
from typing import Union

import idna

__version__ = "1.0.0"

logger = logging.getLogger(__name__)

Path = Sequence[Union[str, int]]


class CoercionError(Exception):
    """
    Raised if coercion fails. The associated message has the form
    `<path>: <reason>`, or just `<reason>` when the failing value is the root
    of the coerced object.
    """

    path: str
    reason: str

    def __init__(self, path: str, reason: str) -> None:
        """
        :param path: the rendered location of the offending value
        :param reason: explanation about what went wrong
        """
        self.path = path
        self.reason = reason
        if path:
            super().__init__(f"{path}: {reason}")
        else:
            super().__init__(reason)


class SchemaError(Exception):
    """
    Raised if a checker is constructed from invalid arguments.
    """

    pass


class _omit:
    def __repr__(self) -> str:
        return "Omit"


Omit = _omit()
"""
Marker for :py:class:`vtcoerce.field_map` defaults: the field may be absent
and is then left out of the result.
"""

ZERO_TIME = datetime.datetime(1, 1, 1, tzinfo=datetime.timezone.utc)

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_UINT64_MAX = 2**64 - 1


def render_path(path: Path | None) -> str:
    """
    Renders a path for use in error messages. String segments are map keys
    and are joined with `.`, integer segments are list indices and are
    rendered as `[i]`. The first segment never gets a leading dot.

    :param path: the path to be rendered; `None` stands for the root
    :return: the rendered path; empty for the root
    """
    if not path:
        return ""
    parts = []
    for i, segment in enumerate(path):
        if isinstance(segment, int):
            parts.append(f"[{segment}]")
        elif i == 0:
            parts.append(segment)
        else:
            parts.append(f".{segment}")
    return "".join(parts)


def _extend(path: Path | None, segment: str | int) -> tuple[str | int, ...]:
    if path is None:
        return (segment,)
    return (*path, segment)


def _c(s: object) -> str:
    try:
        ss = repr(s)
    except ValueError:
        # ints beyond sys.get_int_max_str_digits() have no repr
        ss = f"<{type(s).__name__} too large to display>"
    if len(ss) < 120:
        return ss
    ret = f"{ss[:99]}...[TRUNCATED]..."
    if ss[-1] in "])}":
        ret += ss[-1]
    return ret


def _q(s: object) -> str:
    if isinstance(s, str):
        return json.dumps(s, ensure_ascii=False)
    return _c(s)


def _got(obj: object) -> str:
    if obj is None:
        return "nothing"
    return f"{type(obj).__name__}({_c(obj)})"


def _wrong_type(obj: object, path: Path | None, expected: str) -> CoercionError:
    return CoercionError(render_path(path), f"expected {expected}, got {_got(obj)}")


def _same(x: object, y: object) -> bool:
    # True == 1 == 1.0 in Python; a constant only accepts its own kind of number
    if isinstance(x, bool) != isinstance(y, bool):
        return False
    if isinstance(x, float) != isinstance(y, float):
        return False
    return bool(x == y)


def _is_integer(obj: object) -> bool:
    return isinstance(obj, int) and not isinstance(obj, bool)


def _is_number(obj: object) -> bool:
    return isinstance(obj, (int, float)) and not isinstance(obj, bool)


class checker:
    """
    Base class for checkers. A checker is immutable once constructed and may
    be shared freely, also between threads.
    """

    def coerce(self, obj: object, path: Path | None = None) -> object:
        """
        Validates the given object and returns its normalized form.

        :param obj: the object to be coerced
        :param path: location of `obj` inside the enclosing object; used in
          error messages only
        :return: the normalized object
        :raises CoercionError: exception thrown when the object does not
          conform; the exception message contains the location and an
          explanation about what went wrong
        """
        return obj


def compile(schema: object) -> checker:
    """
    Turns a schema into a checker. A checker is returned unchanged, a checker
    class is instantiated and any other object is treated as a constant.

    :param schema: the schema that should be compiled
    :raises SchemaError: exception thrown when a checker class cannot be
      instantiated without arguments
    """
    if isinstance(schema, checker):
        return schema
    if isinstance(schema, type) and issubclass(schema, checker):
        try:
            return schema()
        except TypeError:
            raise SchemaError(
                f"{repr(schema.__name__)} does not have a no-argument constructor"
            ) from None
    return const(schema)


def coerce(schema: object, obj: object, path: Path | None = None) -> object:
    """
    Coerces the given object with the given schema.

    :param schema: the given schema; see :py:func:`vtcoerce.compile`
    :param obj: the object to be coerced
    :param path: location of the object; `None` for the root
    :return: the normalized object
    :raises CoercionError: exception thrown when the object does not conform
    :raises SchemaError: exception thrown when the schema definition is found
      to contain an error
    """
    try:
        return compile(schema).coerce(obj, path)
    except CoercionError as e:
        logger.debug("coercion failed: %s", e)
        raise


# Primitive checkers


class const(checker):
    """
    Matches exactly the given value.
    """

    value: object

    def __init__(self, value: object) -> None:
        """
        :param value: the expected value
        """
        self.value = value

    def coerce(self, obj: object, path: Path | None = None) -> object:
        if _same(obj, self.value):
            return obj
        raise _wrong_type(obj, path, _c(self.value))

    def __str__(self) -> str:
        return repr(self.value)


class nil(checker):
    """
    Matches only `None`.
    """

    label: str

    def __init__(self, label: str = "") -> None:
        """
        :param label: description of the value used in error messages
        """
        self.label = label or "value"

    def coerce(self, obj: object, path: Path | None = None) -> None:
        if obj is None:
            return None
        raise _wrong_type(obj, path, f"empty {self.label}")


class anything(checker):
    """
    Matches anything, `None` included.
    """

    def coerce(self, obj: object, path: Path | None = None) -> object:
        return obj


_TRUE_STRINGS = ("1", "true", "True", "TRUE")
_FALSE_STRINGS = ("0", "false", "False", "FALSE")


class bool_(checker):
    """
    Matches booleans and their common textual spellings.
    """

    def coerce(self, obj: object, path: Path | None = None) -> bool:
        if isinstance(obj, bool):
            return obj
        if isinstance(obj, str):
            if obj in _TRUE_STRINGS:
                return True
            if obj in _FALSE_STRINGS:
                return False
        raise _wrong_type(obj, path, "bool")


def _parse_int(s: str) -> int:
    if s != s.strip():
        raise ValueError(f"invalid integer literal {s!r}")
    return int(s, 0)


class int_(checker):
    """
    Matches integers in the signed 64 bit range and integer literals.
    """

    def coerce(self, obj: object, path: Path | None = None) -> int:
        value: int | None = None
        if _is_integer(obj):
            value = int(obj)  # type: ignore[call-overload]
        elif isinstance(obj, str):
            try:
                value = _parse_int(obj)
            except ValueError:
                value = None
        if value is not None and _INT64_MIN <= value <= _INT64_MAX:
            return value
        raise _wrong_type(obj, path, "int")


class uint(checker):
    """
    Matches integers in the unsigned 64 bit range and unsigned integer
    literals.
    """

    def coerce(self, obj: object, path: Path | None = None) -> int:
        value: int | None = None
        if _is_integer(obj):
            value = int(obj)  # type: ignore[call-overload]
        elif isinstance(obj, str) and obj[:1] not in ("+", "-"):
            try:
                value = _parse_int(obj)
            except ValueError:
                value = None
        if value is not None and 0 <= value <= _UINT64_MAX:
            return value
        raise _wrong_type(obj, path, "uint")


def _parse_number(s: str) -> int | float:
    try:
        return _parse_int(s)
    except ValueError:
        pass
    if s != s.strip():
        raise ValueError(f"invalid number literal {s!r}")
    return float(s)


def _force_number(obj: object) -> int | float | None:
    if _is_number(obj):
        number = obj
    elif isinstance(obj, str):
        try:
            number = _parse_number(obj)
        except ValueError:
            return None
    else:
        return None
    assert isinstance(number, (int, float))
    if isinstance(number, float) and not math.isfinite(number):
        return None
    return number


class force_int(checker):
    """
    Matches numbers and numeric literals. Fractional values are truncated
    towards zero.
    """

    def coerce(self, obj: object, path: Path | None = None) -> int:
        number = _force_number(obj)
        if number is None:
            raise _wrong_type(obj, path, "number")
        return math.trunc(number)


class force_uint(checker):
    """
    Matches non-negative numbers and numeric literals. Fractional values are
    truncated towards zero.
    """

    def coerce(self, obj: object, path: Path | None = None) -> int:
        number = _force_number(obj)
        if number is None or number < 0:
            raise _wrong_type(obj, path, "uint")
        return math.trunc(number)


class float_(checker):
    """
    Matches integers and floats. Not strings.
    """

    def coerce(self, obj: object, path: Path | None = None) -> float:
        if _is_number(obj):
            try:
                return float(obj)  # type: ignore[arg-type]
            except OverflowError:
                pass
        raise _wrong_type(obj, path, "float")


class string(checker):
    """
    Matches strings.
    """

    def coerce(self, obj: object, path: Path | None = None) -> str:
        if isinstance(obj, str):
            return obj
        raise _wrong_type(obj, path, "string")


class non_empty_string(checker):
    """
    Matches strings of positive length.
    """

    label: str

    def __init__(self, label: str = "") -> None:
        """
        :param label: description of the value used in error messages
        """
        self.label = label or "string"

    def coerce(self, obj: object, path: Path | None = None) -> str:
        if isinstance(obj, str) and obj != "":
            return obj
        raise _wrong_type(obj, path, f"non-empty {self.label}")


_url_control = re.compile(r"[\x00-\x1f\x7f]")
_url_bad_escape = re.compile(r"%(?![0-9a-fA-F]{2})")


def _parse_url(s: str) -> urllib.parse.ParseResult:
    if s.startswith(":"):
        raise ValueError("missing protocol scheme")
    if _url_control.search(s):
        raise ValueError("invalid control character in url")
    if _url_bad_escape.search(s):
        raise ValueError("invalid url escape")
    result = urllib.parse.urlparse(s)
    # accessing the port validates it
    result.port
    hostname = result.hostname
    if hostname and not hostname.isascii():
        try:
            idna.encode(hostname, uts46=True)
        except idna.core.IDNAError as e:
            raise ValueError(str(e)) from None
    return result


class url(checker):
    """
    Matches strings that parse as urls and returns the parsed url. Non-ascii
    host names must be valid IDNA host names.
    """

    def coerce(
        self, obj: object, path: Path | None = None
    ) -> urllib.parse.ParseResult:
        if isinstance(obj, urllib.parse.ParseResult):
            return obj
        if not isinstance(obj, str):
            raise _wrong_type(obj, path, "url string")
        try:
            return _parse_url(obj)
        except ValueError:
            raise _wrong_type(obj, path, "valid url") from None


class simple_regexp(checker):
    """
    Matches strings that compile as regular expressions.
    """

    def coerce(self, obj: object, path: Path | None = None) -> str:
        if not isinstance(obj, str):
            raise _wrong_type(obj, path, "regexp string")
        try:
            re.compile(obj)
        except re.error:
            raise _wrong_type(obj, path, "valid regexp") from None
        return obj


_uuid = re.compile(
    r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"
)


class uuid(checker):
    """
    Matches uuids in their canonical textual form.
    """

    def coerce(self, obj: object, path: Path | None = None) -> str:
        if isinstance(obj, str) and _uuid.fullmatch(obj):
            return obj
        raise _wrong_type(obj, path, "uuid")


_rfc3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})[Tt](\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?"
    r"(?:([Zz])|([+-])(\d{2}):(\d{2}))"
)


def _parse_time(s: str) -> datetime.datetime:
    m = _rfc3339.fullmatch(s)
    if m is None:
        raise ValueError(f"parsing time {s!r}: not an RFC 3339 timestamp")
    year, month, day, hour, minute, second, fraction, zulu, sign, oh, om = m.groups()
    tz = datetime.timezone.utc
    if zulu is None:
        if int(oh) > 23 or int(om) > 59:
            raise ValueError(f"parsing time {s!r}: time zone offset out of range")
        offset = datetime.timedelta(hours=int(oh), minutes=int(om))
        tz = datetime.timezone(-offset if sign == "-" else offset)
    microsecond = int((fraction or "")[:6].ljust(6, "0"))
    try:
        return datetime.datetime(
            int(year),
            int(month),
            int(day),
            int(hour),
            int(minute),
            int(second),
            microsecond,
            tzinfo=tz,
        )
    except ValueError as e:
        raise ValueError(f"parsing time {s!r}: {e}") from None


class time(checker):
    """
    Matches RFC 3339 timestamps (with optional fractional seconds) and
    `datetime` objects. The empty string stands for :py:data:`ZERO_TIME`.
    """

    def coerce(self, obj: object, path: Path | None = None) -> datetime.datetime:
        if isinstance(obj, datetime.datetime):
            return obj
        if not isinstance(obj, str):
            raise _wrong_type(obj, path, "string or datetime")
        if obj == "":
            return ZERO_TIME
        try:
            return _parse_time(obj)
        except ValueError as e:
            raise CoercionError(render_path(path), f"conversion to time: {e}") from e


_duration_units = {
    "ns": 1,
    "us": 10**3,
    "µs": 10**3,
    "μs": 10**3,
    "ms": 10**6,
    "s": 10**9,
    "m": 60 * 10**9,
    "h": 3600 * 10**9,
}
_duration_term = re.compile(r"(\d*)(?:\.(\d*))?([^\d.]*)")


def _parse_duration(s: str) -> datetime.timedelta:
    rest = s
    negative = False
    if rest[:1] in ("+", "-"):
        negative = rest[0] == "-"
        rest = rest[1:]
    if rest == "0":
        return datetime.timedelta(0)
    if rest == "":
        raise ValueError(f"invalid duration {s!r}")
    nanoseconds = Fraction(0)
    pos = 0
    while pos < len(rest):
        m = _duration_term.match(rest, pos)
        assert m is not None
        whole, fraction, unit = m.groups()
        if not whole and not fraction:
            raise ValueError(f"invalid duration {s!r}")
        if unit == "":
            raise ValueError(f"missing unit in duration {s!r}")
        if unit not in _duration_units:
            raise ValueError(f"unknown unit {unit!r} in duration {s!r}")
        value = Fraction(int(whole or "0"))
        if fraction:
            value += Fraction(int(fraction), 10 ** len(fraction))
        nanoseconds += value * _duration_units[unit]
        pos = m.end()
    if nanoseconds > _INT64_MAX:
        raise ValueError(f"invalid duration {s!r}")
    microseconds = math.trunc(nanoseconds / 1000)
    return datetime.timedelta(microseconds=-microseconds if negative else microseconds)


class time_duration(checker):
    """
    Matches durations such as `"1h30m"` or `"250ms"` and `timedelta`
    objects. The empty string stands for a zero duration.
    """

    def coerce(self, obj: object, path: Path | None = None) -> datetime.timedelta:
        if isinstance(obj, datetime.timedelta):
            return obj
        if not isinstance(obj, str):
            raise _wrong_type(obj, path, "string or timedelta")
        if obj == "":
            return datetime.timedelta(0)
        try:
            return _parse_duration(obj)
        except ValueError as e:
            raise CoercionError(
                render_path(path), f"conversion to duration: {e}"
            ) from e


_size_suffixes = "MGTPEZY"
_size = re.compile(r"([0-9.]*)(.*)", re.DOTALL)
_size_number = re.compile(r"[0-9]+(?:\.[0-9]*)?|\.[0-9]+")


def _parse_size(s: str) -> int:
    m = _size.fullmatch(s)
    assert m is not None
    number, suffix = m.groups()
    multiplier = 1
    if number and suffix:
        for i, base in enumerate(_size_suffixes):
            if suffix in (base, base + "B", base + "iB"):
                multiplier = 1024**i
                break
        else:
            raise ValueError(
                f"invalid multiplier suffix {_q(suffix)}, expected one of "
                f"{_size_suffixes}"
            )
        s = number
    if not _size_number.fullmatch(s):
        raise ValueError(f"expected a non-negative number, got {_q(s)}")
    value = float(s) * multiplier
    if not math.isfinite(value) or value > _UINT64_MAX:
        raise ValueError(f"size {_q(s)} out of range")
    return math.ceil(value)


class size(checker):
    """
    Matches sizes such as `"512M"` or `"18G"` and returns them in megabytes.
    The multipliers are binary: `G` is 1024 megabytes.
    """

    def coerce(self, obj: object, path: Path | None = None) -> int:
        value = string().coerce(obj, path)
        if value == "":
            raise _wrong_type(value, path, "empty string")
        try:
            return _parse_size(value)
        except ValueError as e:
            raise CoercionError(render_path(path), str(e)) from e


def _canonical(value: object) -> object:
    if isinstance(value, urllib.parse.ParseResult):
        return value.geturl()
    if isinstance(value, datetime.datetime):
        return value.isoformat()
    if isinstance(value, datetime.timedelta):
        return str(value)
    if isinstance(value, Mapping):
        return {_stringify(k): _canonical(v) for k, v in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        return [_canonical(v) for v in value]
    return value


def _stringify(value: object) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(
        _canonical(value), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


class stringified(checker):
    """
    Turns booleans, numbers and strings into strings. If inner checkers are
    given, anything they accept is rendered as well: strings are kept as they
    are and everything else is dumped as compact JSON with sorted keys.
    """

    checkers: list[checker]

    def __init__(self, *checkers: object) -> None:
        """
        :param checkers: inner checkers; they are tried in order
        """
        self.checkers = [compile(c) for c in checkers]

    def coerce(self, obj: object, path: Path | None = None) -> str:
        for c in self.checkers:
            try:
                value = c.coerce(obj, path)
            except CoercionError:
                continue
            try:
                return _stringify(value)
            except (TypeError, ValueError):
                break
        if isinstance(obj, (bool, int, float, str)):
            try:
                return _stringify(obj)
            except ValueError:
                pass
        raise CoercionError(render_path(path), f"unexpected value {_c(obj)}")


# Combinators


class one_of(checker):
    """
    Tries the given checkers in order and returns the result of the first one
    that succeeds.
    """

    checkers: list[checker]

    def __init__(self, *checkers: object) -> None:
        """
        :param checkers: the alternatives
        """
        self.checkers = [compile(c) for c in checkers]

    def coerce(self, obj: object, path: Path | None = None) -> object:
        for c in self.checkers:
            try:
                return c.coerce(obj, path)
            except CoercionError:
                continue
        raise CoercionError(render_path(path), f"unexpected value {_c(obj)}")


# Containers


class list_(checker):
    """
    Matches sequences (strings excluded) whose elements are all accepted by
    the element checker. The result is a new list.
    """

    elem: checker

    def __init__(self, elem: object) -> None:
        """
        :param elem: checker for the elements
        """
        self.elem = compile(elem)

    def coerce(self, obj: object, path: Path | None = None) -> list[object]:
        if not isinstance(obj, Sequence) or isinstance(obj, (str, bytes)):
            raise _wrong_type(obj, path, "list")
        return [self.elem.coerce(o, _extend(path, i)) for i, o in enumerate(obj)]


class map_(checker):
    """
    Matches mappings whose keys and values are accepted by the key and value
    checkers respectively. The result is a new dictionary keyed by the
    coerced keys.
    """

    key: checker
    value: checker

    def __init__(self, key: object, value: object) -> None:
        """
        :param key: checker for the keys
        :param value: checker for the values
        """
        self.key = compile(key)
        self.value = compile(value)

    def coerce(self, obj: object, path: Path | None = None) -> dict[object, object]:
        if not isinstance(obj, Mapping):
            raise _wrong_type(obj, path, "map")
        ret = {}
        for k, v in obj.items():
            key = self.key.coerce(k, path)
            ret[key] = self.value.coerce(v, _extend(path, str(key)))
        return ret


class string_map(map_):
    """
    A :py:class:`vtcoerce.map_` whose keys are strings.
    """

    def __init__(self, value: object) -> None:
        """
        :param value: checker for the values
        """
        super().__init__(string(), value)


# Structured checkers


class field_map(checker):
    """
    Matches mappings with string keys containing the declared fields. Keys
    that are not declared are dropped from the result.
    """

    fields: dict[str, checker]
    defaults: dict[str, object]
    strict: bool = False

    def __init__(
        self,
        fields: Mapping[str, object],
        defaults: Mapping[str, object] | None = None,
    ) -> None:
        """
        :param fields: a dictionary associating field names with checkers
        :param defaults: a dictionary associating field names with default
          values; a field with default :py:data:`vtcoerce.Omit` may be
          absent, a field without a default is required

        :raises SchemaError: exception thrown when the schema definition is
          found to contain an error
        """
        if not isinstance(fields, Mapping):
            raise SchemaError(f"{_c(fields)} is not a Mapping")
        self.fields = {}
        for k, v in fields.items():
            if not isinstance(k, str):
                raise SchemaError(f"field name {_c(k)} is not a string")
            self.fields[k] = compile(v)
        self.defaults = dict(defaults or {})
        for k in self.defaults:
            if k not in self.fields:
                raise SchemaError(f"default given for undeclared field {_c(k)}")

    def coerce(self, obj: object, path: Path | None = None) -> dict[str, object]:
        if not isinstance(obj, Mapping):
            raise _wrong_type(obj, path, "map")
        for k in obj:
            if not isinstance(k, str):
                raise CoercionError(
                    render_path(path),
                    f"expected map[string], got {type(obj).__name__}({obj!r})",
                )

        ret = {}
        for name, field in self.fields.items():
            if name in obj:
                value = obj[name]
            elif name in self.defaults:
                value = self.defaults[name]
                if value is Omit:
                    continue
            else:
                value = None
            ret[name] = field.coerce(value, _extend(path, name))

        if self.strict:
            for k, v in obj.items():
                if k not in self.fields:
                    raise CoercionError(
                        render_path(path), f"unknown key {_q(k)} (value {_q(v)})"
                    )
        return ret


class strict_field_map(field_map):
    """
    A :py:class:`vtcoerce.field_map` that rejects keys which are not
    declared.
    """

    strict = True


class field_map_set(checker):
    """
    Matches mappings against one of several field maps, chosen by the value
    of a selector field. Every field map must declare the selector field with
    a distinct :py:class:`vtcoerce.const` checker.
    """

    selector: str
    checkers: list[field_map]

    def __init__(self, selector: str, checkers: Sequence[object]) -> None:
        """
        :param selector: name of the selector field
        :param checkers: the candidate field maps

        :raises SchemaError: exception thrown when the schema definition is
          found to contain an error
        """
        self.selector = selector
        self.checkers = []
        for c in checkers:
            c_ = compile(c)
            if not isinstance(c_, field_map):
                raise SchemaError(f"{c_.__class__.__name__} is not a field_map")
            if not isinstance(c_.fields.get(selector), const):
                raise SchemaError(
                    f"field_map does not declare a const checker for {_c(selector)}"
                )
            self.checkers.append(c_)

    def coerce(self, obj: object, path: Path | None = None) -> dict[str, object]:
        if not isinstance(obj, Mapping):
            raise _wrong_type(obj, path, "map")
        selector = obj.get(self.selector)
        if selector is not None:
            for c in self.checkers:
                s = c.fields[self.selector]
                assert isinstance(s, const)
                if _same(selector, s.value):
                    return c.coerce(obj, path)
        raise _wrong_type(selector, _extend(path, self.selector), "supported selector")
