#!/usr/bin/env python3
"""Schema introspection: captures columns, references and planner statistics"""
import json
import sys
import time

from dependency_graph import get_table_load_order
from generate_mock_data_utils import debug_print, table_key, qualified_name, is_excluded_schema

BASE_TABLES_QUERY = """
    SELECT table_schema AS schema_name, table_name
    FROM information_schema.tables
    WHERE table_type = 'BASE TABLE'
    ORDER BY table_schema, table_name
"""

FOREIGN_KEY_DEPENDENCIES_QUERY = """
    SELECT
      ns1.nspname AS schema_name,
      cl1.relname AS table_name,
      ns2.nspname AS referenced_schema,
      cl2.relname AS referenced_table
    FROM pg_constraint con
    JOIN pg_class cl1 ON con.conrelid = cl1.oid
    JOIN pg_class cl2 ON con.confrelid = cl2.oid
    JOIN pg_namespace ns1 ON cl1.relnamespace = ns1.oid
    JOIN pg_namespace ns2 ON cl2.relnamespace = ns2.oid
    WHERE con.contype = 'f'
"""

TABLE_COLUMNS_QUERY = """
    SELECT column_name, data_type, is_nullable, column_default, is_generated, generation_expression, is_identity
    FROM information_schema.columns
    WHERE table_schema = $1 AND table_name = $2
    ORDER BY ordinal_position
"""

PLANNER_STATS_QUERY = """
    SELECT
      attname AS column_name,
      n_distinct::float8 AS n_distinct,
      null_frac,
      avg_width,
      correlation,
      array_to_json(most_common_vals)::text AS most_common_vals,
      most_common_freqs,
      array_to_json(histogram_bounds)::text AS histogram_bounds
    FROM pg_stats
    WHERE schemaname = $1 AND tablename = $2 AND inherited = $3
    ORDER BY attname
"""

FOREIGN_KEY_QUERY = """
    SELECT
      ns2.nspname AS referenced_schema,
      cl2.relname AS referenced_table,
      json_agg(att1.attname ORDER BY att1.attnum)::text AS referencing_columns,
      json_agg(att2.attname ORDER BY att2.attnum)::text AS referenced_columns
    FROM pg_constraint con
    JOIN pg_class cl1 ON con.conrelid = cl1.oid
    JOIN pg_class cl2 ON con.confrelid = cl2.oid
    JOIN pg_namespace ns1 ON cl1.relnamespace = ns1.oid
    JOIN pg_namespace ns2 ON cl2.relnamespace = ns2.oid
    JOIN pg_attribute att1 ON att1.attrelid = con.conrelid AND att1.attnum = ANY(con.conkey)
    JOIN pg_attribute att2 ON att2.attrelid = con.confrelid AND att2.attnum = ANY(con.confkey)
    WHERE con.contype = 'f' AND ns1.nspname = $1 AND cl1.relname = $2
    GROUP BY ns2.nspname, cl2.relname, con.conkey, con.confkey
"""

HAS_PARTITIONS_QUERY = """
    SELECT EXISTS (
      SELECT 1
      FROM pg_class c
      JOIN pg_namespace n ON n.oid = c.relnamespace
      WHERE n.nspname = $1 AND c.relname = $2
      AND EXISTS (SELECT 1 FROM pg_inherits i WHERE i.inhparent = c.oid)
    )
"""

PARTITION_ROW_COUNT_QUERY = """
    SELECT sum(c.reltuples::bigint)
    FROM pg_class c
    JOIN pg_inherits i ON i.inhrelid = c.oid
    JOIN pg_class parent ON i.inhparent = parent.oid
    JOIN pg_namespace parent_schema ON parent.relnamespace = parent_schema.oid
    WHERE parent_schema.nspname = $1 AND parent.relname = $2
"""

TABLE_ROW_COUNT_QUERY = """
    SELECT reltuples::bigint
    FROM pg_class c
    JOIN pg_namespace n ON n.oid = c.relnamespace
    WHERE n.nspname = $1 AND c.relname = $2
"""


def _decode_json(value):
    if value is None or isinstance(value, (list, dict)):
        return value
    return json.loads(value)


async def load_table_columns(pool, schema, table):
    """Load column metadata from information_schema"""
    rows = await pool.fetch(TABLE_COLUMNS_QUERY, schema, table)
    return [dict(r) for r in rows]


async def load_planner_stats(pool, schema, table, partitioned, columns):
    """Load pg_stats rows, decoded, with each column's declared data type attached"""
    types = {c["column_name"]: c["data_type"] for c in columns}
    stats = []
    for r in await pool.fetch(PLANNER_STATS_QUERY, schema, table, partitioned):
        freqs = r["most_common_freqs"]
        stats.append({
            "column_name": r["column_name"],
            "n_distinct": r["n_distinct"],
            "null_frac": r["null_frac"],
            "avg_width": r["avg_width"],
            "correlation": r["correlation"],
            "most_common_vals": _decode_json(r["most_common_vals"]),
            "most_common_freqs": [float(f) for f in freqs] if freqs is not None else None,
            "histogram_bounds": _decode_json(r["histogram_bounds"]),
            "data_type": types.get(r["column_name"], ""),
        })
    return stats


async def load_table_references(pool, schema, table):
    rows = await pool.fetch(FOREIGN_KEY_QUERY, schema, table)
    return [{
        "referenced_schema": r["referenced_schema"],
        "referenced_table": r["referenced_table"],
        "referencing_columns": _decode_json(r["referencing_columns"]),
        "referenced_columns": _decode_json(r["referenced_columns"]),
    } for r in rows]


async def load_exact_row_count(pool, schema, table):
    return int(await pool.fetchval("SELECT COUNT(*) FROM {0}".format(qualified_name(schema, table))) or 0)


async def load_row_count(pool, schema, table):
    """
    Approximate row count from reltuples, summed over partitions for a
    partitioned parent. An estimate of 0 falls back to an exact count.

    Returns: (row_count, partitioned)
    """
    partitioned = bool(await pool.fetchval(HAS_PARTITIONS_QUERY, schema, table))
    query = PARTITION_ROW_COUNT_QUERY if partitioned else TABLE_ROW_COUNT_QUERY
    approximate = int(await pool.fetchval(query, schema, table) or 0)
    # reltuples is -1 for tables never analyzed
    if approximate <= 0:
        return await load_exact_row_count(pool, schema, table), partitioned
    return approximate, partitioned


class SchemaIntrospector(object):
    """
    Responsible for capturing the metadata document of a source database.

    Handles:
    - Listing base tables and their foreign key dependencies
    - Ordering tables so referenced tables come first
    - Loading columns, references, planner statistics and row counts per table
    """

    def __init__(self, pool, config):
        """
        Args:
            pool: asyncpg connection pool of the source database
            config: GenerationConfig (excluded schemas)
        """
        self.pool = pool
        self.config = config

    async def list_tables(self):
        rows = await self.pool.fetch(BASE_TABLES_QUERY)
        return [(r["schema_name"], r["table_name"]) for r in rows
                if not is_excluded_schema(self.config, r["schema_name"])]

    async def list_dependencies(self):
        rows = await self.pool.fetch(FOREIGN_KEY_DEPENDENCIES_QUERY)
        return [(r["schema_name"], r["table_name"], r["referenced_schema"], r["referenced_table"]) for r in rows
                if not is_excluded_schema(self.config, r["schema_name"])
                and not is_excluded_schema(self.config, r["referenced_schema"])]

    async def describe_table(self, schema, table):
        """Returns one entry of the metadata document's "tables" list."""
        row_count, partitioned = await load_row_count(self.pool, schema, table)
        columns = await load_table_columns(self.pool, schema, table)
        planner_stats = await load_planner_stats(self.pool, schema, table, partitioned, columns)
        references = await load_table_references(self.pool, schema, table)
        return {
            "schema_name": schema,
            "table_name": table,
            "references": references,
            "columnInfo": columns,
            "statistics": {
                "rowCount": row_count,
                "plannerStats": planner_stats,
                "sampleData": [],
            },
        }

    async def extract(self, only_schema=None, only_table=None):
        """
        Capture every selected table in load order.

        A table that cannot be read is reported in "warnings" and left out.

        Returns: dict with "tables", "warnings" and "cycles"
        """
        tables = await self.list_tables()
        dependencies = await self.list_dependencies()
        load_order = get_table_load_order(tables, dependencies)
        warnings = list(load_order.warnings)

        selected = [t for t in load_order.ordered_tables
                    if (only_schema is None or t.schema_name == only_schema)
                    and (only_table is None or t.table_name == only_table)]
        debug_print("Extracting {0} of {1} tables".format(len(selected), len(tables)))

        details = []
        for t in selected:
            key = table_key(t.schema_name, t.table_name)
            started = time.time()
            try:
                details.append(await self.describe_table(t.schema_name, t.table_name))
            except Exception as e:
                print("Error processing {0}: {1}".format(key, e), file=sys.stderr)
                warnings.append("Failed to process {0}: {1}".format(key, e))
                continue
            print("Processing {0} [{1} ms]".format(key, int((time.time() - started) * 1000)))

        return {"tables": details, "warnings": warnings, "cycles": list(load_order.cycles)}
