#!/usr/bin/env python3
"""Statistical value sampling for one column from captured planner statistics"""
import math
import random
import string
import uuid
from collections import namedtuple
from datetime import datetime, date, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum

from generate_mock_data_errors import DataQualityError, UnsupportedSchemaError
from generate_mock_data_patterns import CompiledPatterns
from generate_mock_data_utils import (
    normalize_base_type, strip_default_expression, parse_date,
    to_epoch_millis, from_epoch_millis
)

# Fallback used when neither config.start_date nor a histogram gives a start
DEFAULT_START_DATE = datetime(2020, 1, 1, tzinfo=timezone.utc)

# Enum columns without common values may still be NULL above this fraction
ENUM_NULL_ESCAPE_FRACTION = 0.1

RANDOM_NUMERIC_CEILING = 1000000
SMALLINT_MAX = 32767


class _NoValue(object):
    """Marker for "this sampling step produced nothing, try the next one"."""

    def __repr__(self):
        return "NO_VALUE"

    def __bool__(self):
        return False


NO_VALUE = _NoValue()


class SamplingStrategy(Enum):
    DISCRETE = "discrete"
    CONTINUOUS = "continuous"
    CUSTOM = "custom"


class BaseType(Enum):
    """Every base type the sampler knows; each one needs a TypeHandler."""
    INTEGER = "integer"
    BIGINT = "bigint"
    SMALLINT = "smallint"
    NUMERIC = "numeric"
    DOUBLE = "double"
    REAL = "real"
    TIMESTAMP = "timestamp"
    DATE = "date"
    TEXT = "text"
    VARCHAR = "varchar"
    CHARACTER = "character"
    BOOLEAN = "boolean"
    UUID = "uuid"
    INET = "inet"
    JSON = "json"
    JSONB = "jsonb"
    USER_DEFINED = "user-defined"


# fallback is either FORCE_COMMON_VALUE or fallback(column, profile, config, rng)
# transform is transform(value, data_type)
FORCE_COMMON_VALUE = "force-common-value"
TypeHandler = namedtuple(
    "TypeHandler", ["strategy", "fallback", "transform", "temporal", "integral"], defaults=(None, False, False))


def _floor_int(value, data_type):
    exact = _as_exact_int(value)
    if exact is not None:
        return exact
    return int(math.floor(float(value)))


def _as_exact_int(value):
    """int for integral ints and digit strings (no float round trip), else None"""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and CompiledPatterns.INTEGER_LITERAL_PATTERN.match(value.strip()):
        return int(value.strip())
    return None


def _to_decimal(value, data_type):
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return value


def _to_float(value, data_type):
    return float(value)


def _to_timestamp(value, data_type):
    """Timestamps with time zone are bound aware, without time zone as naive UTC."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = from_epoch_millis(value)
    dt = parse_date(value)
    if dt is None:
        return value
    with_tz = "with time zone" in (data_type or "").lower()
    if with_tz:
        return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _to_date(value, data_type):
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = from_epoch_millis(value)
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    dt = parse_date(value)
    if dt is None:
        return value
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return dt.date()


def _random_integer(column, profile, config, rng):
    return rng.randint(0, RANDOM_NUMERIC_CEILING - 1)


def _random_smallint(column, profile, config, rng):
    return rng.randint(0, SMALLINT_MAX)


def _random_float(column, profile, config, rng):
    return rng.random() * RANDOM_NUMERIC_CEILING


def _random_text(column, profile, config, rng):
    suffix = "".join(rng.choice(string.ascii_lowercase + string.digits) for _ in range(6))
    return "value_{0}".format(suffix)


def _random_boolean(column, profile, config, rng):
    return rng.random() < 0.5


def _random_uuid(column, profile, config, rng):
    return str(uuid.UUID(int=rng.getrandbits(128), version=4))


def _random_inet(column, profile, config, rng):
    return ".".join(str(rng.randint(0, 255)) for _ in range(4))


def _random_temporal(column, profile, config, rng):
    """
    Uniform instant between a start and an end.

    start: config.start_date, else the first histogram bound, else 2020-01-01
    end: config.end_date, else now
    """
    start = config.start_date if config is not None else None
    if start is None and profile.histogram_bounds:
        start = parse_date(profile.histogram_bounds[0])
    if start is None:
        start = DEFAULT_START_DATE
    end = config.end_date if config is not None else None
    if end is None:
        end = datetime.now(timezone.utc)
    lo = to_epoch_millis(start)
    hi = to_epoch_millis(end)
    return from_epoch_millis(lo + rng.random() * (hi - lo))


def _first_enum_value(column, profile, config, rng):
    if not profile.most_common_vals:
        if profile.null_frac > ENUM_NULL_ESCAPE_FRACTION:
            return None
        raise DataQualityError(
            "No valid enum values found for column '{0}' (null_frac={1})".format(
                profile.column_name, profile.null_frac))
    return profile.most_common_vals[0]


def _column_default(column, profile, config, rng):
    if column.column_default:
        return strip_default_expression(column.column_default)
    if column.is_nullable == "YES":
        return None
    raise UnsupportedSchemaError("Unsupported data type: {0} (column '{1}')".format(
        profile.data_type or column.data_type, column.column_name))


TYPE_HANDLERS = {
    BaseType.INTEGER: TypeHandler(SamplingStrategy.CONTINUOUS, _random_integer, _floor_int, integral=True),
    BaseType.BIGINT: TypeHandler(SamplingStrategy.CONTINUOUS, _random_integer, _floor_int, integral=True),
    BaseType.SMALLINT: TypeHandler(SamplingStrategy.CONTINUOUS, _random_smallint, _floor_int, integral=True),
    BaseType.NUMERIC: TypeHandler(SamplingStrategy.CONTINUOUS, _random_float, _to_decimal),
    BaseType.DOUBLE: TypeHandler(SamplingStrategy.CONTINUOUS, _random_float, _to_float),
    BaseType.REAL: TypeHandler(SamplingStrategy.CONTINUOUS, _random_float, _to_float),
    BaseType.TIMESTAMP: TypeHandler(SamplingStrategy.CONTINUOUS, _random_temporal, _to_timestamp, True),
    BaseType.DATE: TypeHandler(SamplingStrategy.CONTINUOUS, _random_temporal, _to_date, True),
    BaseType.TEXT: TypeHandler(SamplingStrategy.DISCRETE, _random_text),
    BaseType.VARCHAR: TypeHandler(SamplingStrategy.DISCRETE, _random_text),
    BaseType.CHARACTER: TypeHandler(SamplingStrategy.DISCRETE, _random_text),
    BaseType.BOOLEAN: TypeHandler(SamplingStrategy.DISCRETE, _random_boolean),
    BaseType.UUID: TypeHandler(SamplingStrategy.CUSTOM, _random_uuid),
    BaseType.INET: TypeHandler(SamplingStrategy.CUSTOM, _random_inet),
    BaseType.JSON: TypeHandler(SamplingStrategy.DISCRETE, FORCE_COMMON_VALUE),
    BaseType.JSONB: TypeHandler(SamplingStrategy.DISCRETE, FORCE_COMMON_VALUE),
    BaseType.USER_DEFINED: TypeHandler(SamplingStrategy.DISCRETE, _first_enum_value),
}

GENERIC_HANDLER = TypeHandler(SamplingStrategy.DISCRETE, _column_default)

_unhandled = [t.value for t in BaseType if t not in TYPE_HANDLERS]
if _unhandled:
    raise RuntimeError("Base types without a TypeHandler: {0}".format(", ".join(_unhandled)))

_BASE_TYPES = {t.value: t for t in BaseType}


def resolve_base_type(data_type):
    """Returns the BaseType for a declared data type, or None if unsupported."""
    return _BASE_TYPES.get(normalize_base_type(data_type))


def resolve_type_handler(data_type):
    base_type = resolve_base_type(data_type)
    if base_type is None:
        return GENERIC_HANDLER
    return TYPE_HANDLERS[base_type]


def text_cast_type(data_type):
    """
    Declared type to cast text parameters to on the server, for types without
    a dedicated handler (time, interval, bytea, ...). Their values are
    captured text that asyncpg cannot encode natively.

    Returns: the type name, or None when the value binds as is
    """
    if not data_type or resolve_base_type(data_type) is not None:
        return None
    if data_type.upper() == "ARRAY":
        return None
    if not CompiledPatterns.CAST_TYPE_NAME_PATTERN.match(data_type):
        return None
    return data_type


def total_common_freq(profile):
    return sum(profile.most_common_freqs or ())


def should_use_common_value(profile, rng):
    if not profile.most_common_freqs:
        return False
    return rng.random() < total_common_freq(profile)


def sample_from_frequencies(profile, rng):
    """
    Weighted draw over most_common_vals. Frequencies need not sum to 1.

    Returns: a common value, or NO_VALUE when there are none
    """
    values = profile.most_common_vals
    freqs = profile.most_common_freqs
    if not values or not freqs:
        return NO_VALUE
    total = total_common_freq(profile)
    if total <= 0:
        return NO_VALUE
    r = rng.random() * total
    cumulative = 0.0
    for value, freq in zip(values, freqs):
        cumulative += freq
        if r < cumulative:
            return value
    # float rounding left r at the very top of the range
    return values[len(freqs) - 1]


def sample_from_histogram(profile, temporal, rng, integral=False):
    """
    Uniform draw between the first and last histogram bound.

    Temporal bounds are interpolated in epoch milliseconds and come back as
    datetimes. Integral bounds of integer columns are drawn exactly with
    randint, beyond float precision. Missing or non-numeric bounds give
    NO_VALUE.
    """
    bounds = profile.histogram_bounds
    if not bounds or len(bounds) < 2:
        return NO_VALUE

    if integral:
        lo, hi = _as_exact_int(bounds[0]), _as_exact_int(bounds[-1])
        if lo is not None and hi is not None:
            return rng.randint(min(lo, hi), max(lo, hi))

    if temporal:
        lo = to_epoch_millis(bounds[0])
        hi = to_epoch_millis(bounds[-1])
        if lo is None or hi is None:
            return NO_VALUE
    else:
        try:
            lo = float(bounds[0])
            hi = float(bounds[-1])
        except (TypeError, ValueError):
            return NO_VALUE
        if math.isnan(lo) or math.isnan(hi):
            return NO_VALUE

    value = lo + rng.random() * (hi - lo)
    value = min(max(value, lo), hi)
    return from_epoch_millis(value) if temporal else value


def sample_value(column, profile, fk_candidates, config, rng=random):
    """
    Produce one value for a column.

    Precedence, first result wins:
    1. a uniformly chosen foreign key candidate
    2. NULL with probability profile.null_frac
    3-4. a weighted common value (always for json/jsonb, otherwise with
       probability sum(most_common_freqs))
    5. a histogram interpolation for continuous types
    6. the type's fallback generator
    7. the type's transform

    Args:
        column: ColumnDescriptor
        profile: ColumnProfile
        fk_candidates: list of existing referenced values, or None
        config: GenerationConfig (start_date / end_date)
        rng: random.Random or the random module

    Returns: value or None for NULL
    """
    if fk_candidates:
        return fk_candidates[rng.randrange(len(fk_candidates))]

    if rng.random() < profile.null_frac:
        return None

    data_type = profile.data_type or column.data_type
    handler = resolve_type_handler(data_type)

    value = NO_VALUE
    if handler.fallback == FORCE_COMMON_VALUE or should_use_common_value(profile, rng):
        value = sample_from_frequencies(profile, rng)

    if value is NO_VALUE and handler.strategy is SamplingStrategy.CONTINUOUS:
        value = sample_from_histogram(profile, handler.temporal, rng, handler.integral)

    if value is NO_VALUE:
        if not callable(handler.fallback):
            raise DataQualityError("No common values to sample for {0} column '{1}'".format(
                normalize_base_type(data_type), column.column_name))
        value = handler.fallback(column, profile, config, rng)

    if value is not None and handler.transform is not None:
        value = handler.transform(value, data_type)
    return value
