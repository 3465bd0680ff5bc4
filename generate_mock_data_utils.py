#!/usr/bin/env python3
"""Utility functions and data structures for mock data generation"""
import json, re
from datetime import datetime, date, timezone
from collections import namedtuple

from generate_mock_data_errors import DataQualityError
from generate_mock_data_patterns import CompiledPatterns

GLOBALS = {"debug": False}

DEFAULT_INSERT_BATCH_SIZE = 2000
DEFAULT_PROD_FRACTION = 0.1

# Schemas that are never read from nor written to
EXCLUDED_SCHEMAS = ("pg_catalog", "information_schema")

# Largest number of bind parameters a single PostgreSQL statement accepts
MAX_QUERY_PARAMETERS = 32767

EXCLUSION_STRATEGIES = ("skip", "override")


TableIdentity = namedtuple("TableIdentity", ["schema_name", "table_name"])
ColumnDescriptor = namedtuple(
    "ColumnDescriptor",
    ["column_name", "data_type", "is_nullable", "column_default", "is_generated", "generation_expression", "is_identity"],
    defaults=("NO",))
ColumnProfile = namedtuple("ColumnProfile", ["column_name", "n_distinct", "null_frac", "avg_width", "correlation", "most_common_vals", "most_common_freqs", "histogram_bounds", "data_type"])
ForeignKeyReference = namedtuple("ForeignKeyReference", ["referenced_schema", "referenced_table", "referencing_columns", "referenced_columns"])
TableDetails = namedtuple("TableDetails", ["schema_name", "table_name", "columns", "profiles", "references", "row_count"])
ExcludedColumn = namedtuple("ExcludedColumn", ["column", "strategy", "stats"])
GenerationConfig = namedtuple(
    "GenerationConfig",
    ["prod_fraction", "insert_batch_size", "start_date", "end_date", "excluded_schemas", "excluded_tables", "excluded_columns"],
    defaults=(DEFAULT_INSERT_BATCH_SIZE, None, None, (), (), None))


def debug_print(*args, **kwargs):
    if GLOBALS["debug"]:
        print("[DEBUG]", *args, **kwargs)


def table_key(schema, table):
    return "{0}.{1}".format(schema, table)


def quote_ident(name):
    return '"' + str(name).replace('"', '""') + '"'


def qualified_name(schema, table):
    return "{0}.{1}".format(quote_ident(schema), quote_ident(table))


# "+HH" offset after a time part, as pg_stats renders timestamptz bounds
_OFFSET_HOURS_ONLY = re.compile(r"([T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?[+-]\d{2})$")


def parse_date(date_str):
    """
    Parse a date/timestamp in the formats PostgreSQL and JSON configs use.
    Supports: YYYY-MM-DD, YYYY-MM-DD HH:MM:SS[.ffffff][+HH[:MM]], ISO format
    with 'T' or trailing 'Z'. datetime and date objects pass through.

    Returns: datetime object or None if parsing fails
    """
    if date_str is None or date_str == "":
        return None
    if isinstance(date_str, datetime):
        return date_str
    if isinstance(date_str, date):
        return datetime(date_str.year, date_str.month, date_str.day)
    if not isinstance(date_str, str):
        return None
    text = date_str.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    text = _OFFSET_HOURS_ONLY.sub(r"\1:00", text)
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        pass
    for fmt in ("%Y-%m-%d", "%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S"):
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def to_epoch_millis(value):
    """Milliseconds since the epoch; naive datetimes are read as UTC."""
    dt = parse_date(value)
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp() * 1000.0


def from_epoch_millis(millis):
    return datetime.fromtimestamp(millis / 1000.0, tz=timezone.utc)


def normalize_base_type(data_type):
    """'timestamp with time zone' -> 'timestamp', 'USER-DEFINED' -> 'user-defined'"""
    return CompiledPatterns.TYPE_SUFFIX_PATTERN.sub("", (data_type or "").strip().lower())


def strip_default_expression(column_default):
    """Turn "'active'::status_enum" into "active"."""
    if column_default is None:
        return None
    return CompiledPatterns.TYPE_CAST_PATTERN.sub("", column_default).replace("'", "")


def is_sequence_column(column):
    """True for identity and serial columns and columns defaulting to nextval(...)."""
    if column.is_identity == "YES":
        return True
    if column.column_default and CompiledPatterns.SEQUENCE_DEFAULT_PATTERN.search(column.column_default):
        return True
    return bool(CompiledPatterns.SERIAL_TYPE_PATTERN.search(column.data_type or ""))


def describe_n_distinct(n_distinct):
    """pg_stats n_distinct: -1 all unique, negative a fraction of rows, else a count"""
    if n_distinct is None:
        return "unknown"
    if n_distinct == -1:
        return "all unique"
    if n_distinct < 0:
        return "{0:.2f}% of rows are unique".format(-n_distinct * 100)
    return "{0:g} distinct values".format(n_distinct)


def is_excluded_schema(config, schema):
    if schema in EXCLUDED_SCHEMAS:
        return True
    if CompiledPatterns.INTERNAL_SCHEMA_PATTERN.match(schema or ""):
        return True
    return schema in (config.excluded_schemas or ())


def is_excluded_table(config, schema, table):
    return table_key(schema, table) in (config.excluded_tables or ())


def find_excluded_column(config, schema, table, column):
    """Returns the ExcludedColumn rule for schema.table.column, or None."""
    if not config.excluded_columns:
        return None
    return config.excluded_columns.get("{0}.{1}.{2}".format(schema, table, column))


def column_from_dict(raw):
    return ColumnDescriptor(
        raw["column_name"],
        raw.get("data_type") or "",
        raw.get("is_nullable", "YES"),
        raw.get("column_default"),
        raw.get("is_generated") or "NEVER",
        raw.get("generation_expression"),
        raw.get("is_identity") or "NO")


def profile_from_dict(raw, table_name=None):
    """
    Build a ColumnProfile from a planner statistics entry.

    Raises DataQualityError when most_common_vals and most_common_freqs
    differ in length.
    """
    common_vals = raw.get("most_common_vals")
    common_freqs = raw.get("most_common_freqs")
    if common_vals is not None and common_freqs is not None and len(common_vals) != len(common_freqs):
        raise DataQualityError(
            "Column {0}.{1} has {2} common values but {3} frequencies".format(
                table_name, raw.get("column_name"), len(common_vals), len(common_freqs)),
            table=table_name)
    bounds = raw.get("histogram_bounds")
    return ColumnProfile(
        raw["column_name"],
        raw.get("n_distinct"),
        float(raw.get("null_frac") or 0.0),
        raw.get("avg_width"),
        raw.get("correlation"),
        list(common_vals) if common_vals is not None else None,
        [float(f) for f in common_freqs] if common_freqs is not None else None,
        list(bounds) if bounds is not None else None,
        raw.get("data_type") or "")


def reference_from_dict(raw):
    return ForeignKeyReference(
        raw["referenced_schema"],
        raw["referenced_table"],
        list(raw.get("referencing_columns") or []),
        list(raw.get("referenced_columns") or []))


def table_details_from_dict(raw):
    """Convert one entry of the metadata document's "tables" list."""
    key = table_key(raw["schema_name"], raw["table_name"])
    statistics = raw.get("statistics") or {}
    return TableDetails(
        raw["schema_name"],
        raw["table_name"],
        tuple(column_from_dict(c) for c in raw.get("columnInfo") or []),
        tuple(profile_from_dict(s, key) for s in statistics.get("plannerStats") or []),
        tuple(reference_from_dict(r) for r in raw.get("references") or []),
        int(statistics.get("rowCount") or 0))


def json_default(value):
    """json.dumps hook for values asyncpg hands back (dates, decimals, UUIDs)."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def to_pg_param(data_type, value, as_text=False):
    """
    JSON/JSONB values are bound as text. Columns cast on the server
    (as_text) get the text form of their value; everything else passes
    through.
    """
    if value is None:
        return None
    if normalize_base_type(data_type) in ("json", "jsonb"):
        return json.dumps(value, default=json_default)
    if as_text and not isinstance(value, str):
        return json_default(value)
    return value


def render_insert_statement(schema, table, colnames, row_count, casts=None):
    """
    Render a multi-row parameterized INSERT ($1, $2, ...) for row_count rows.

    casts maps a column to its declared type; its parameters are bound as
    text and converted on the server ($1::text::interval).

    A table whose every column is left to the database gets its rows through
    an INSERT ... SELECT over generate_series so defaults apply.
    """
    if not colnames:
        return "INSERT INTO {0} SELECT FROM generate_series(1, {1})".format(
            qualified_name(schema, table), int(row_count))
    cols = ", ".join(quote_ident(c) for c in colnames)
    casts = casts or {}
    suffixes = ["::text::{0}".format(casts[c]) if c in casts else "" for c in colnames]
    width = len(colnames)
    vals = []
    for i in range(row_count):
        vals.append("(" + ", ".join("${0}{1}".format(i * width + j + 1, suffixes[j]) for j in range(width)) + ")")
    return "INSERT INTO {0} ({1}) VALUES {2}".format(qualified_name(schema, table), cols, ", ".join(vals))
