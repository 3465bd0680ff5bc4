#!/usr/bin/env python3
"""Populate a PostgreSQL database with mock rows drawn from captured planner statistics"""
import argparse, asyncio, json, math, os, random, sys
from collections import namedtuple

try:
    import asyncpg
except ImportError:
    print("Error: asyncpg required.  Install: pip install asyncpg", file=sys.stderr)
    sys.exit(1)

from dependency_graph import build_graph_from_details, compute_load_order
from foreign_key_pool import ForeignKeyPool, DEFAULT_FK_SAMPLE_SIZE
from generate_mock_data_errors import GenerationAbortedError, describe_error_chain
from generate_mock_data_utils import (
    GLOBALS, DEFAULT_PROD_FRACTION, DEFAULT_INSERT_BATCH_SIZE, EXCLUSION_STRATEGIES, MAX_QUERY_PARAMETERS,
    GenerationConfig, ExcludedColumn, debug_print, parse_date, table_key, is_excluded_schema,
    is_excluded_table, table_details_from_dict, json_default, to_pg_param, render_insert_statement
)
from row_generator import RowGenerator
from schema_introspector import SchemaIntrospector
from value_sampler import text_cast_type

MetadataDocument = namedtuple("MetadataDocument", ["tables", "warnings", "cycles"])

DEFAULT_OUTPUT_DIR = "./schema_with_samples"
METADATA_FILE_NAME = "tables.json"


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_config(raw):
    """
    Validate a configuration object and convert it into a GenerationConfig.

    Raises ValueError describing the first problem found.
    """
    if not isinstance(raw, dict):
        raise ValueError("Config must be an object")

    prod_fraction = raw.get("prodFraction", DEFAULT_PROD_FRACTION)
    if not _is_number(prod_fraction) or not 0 < prod_fraction <= 1:
        raise ValueError("prodFraction must be a number in (0, 1], got {0!r}".format(prod_fraction))

    batch_size = raw.get("insertBatchSize", DEFAULT_INSERT_BATCH_SIZE)
    if not isinstance(batch_size, int) or isinstance(batch_size, bool) or batch_size <= 0:
        raise ValueError("insertBatchSize must be a positive integer, got {0!r}".format(batch_size))

    dates = {}
    for name in ("startDate", "endDate"):
        value = raw.get(name)
        dates[name] = parse_date(value) if value else None
        if value and dates[name] is None:
            raise ValueError("{0} has an invalid date format: {1}".format(name, value))

    excluded = raw.get("excluded") or {}
    if not isinstance(excluded, dict):
        raise ValueError("excluded must be an object")
    columns = {}
    for entry in excluded.get("columns") or []:
        if not isinstance(entry, dict) or not entry.get("column"):
            raise ValueError("Excluded column entry missing 'column' field: {0}".format(entry))
        strategy = entry.get("strategy", "skip")
        if strategy not in EXCLUSION_STRATEGIES:
            raise ValueError("Excluded column {0} has unknown strategy '{1}'".format(entry["column"], strategy))
        stats = entry.get("stats")
        if strategy == "override":
            if not isinstance(stats, dict):
                raise ValueError("Excluded column {0} uses 'override' without 'stats'".format(entry["column"]))
            vals = stats.get("most_common_vals") or []
            freqs = stats.get("most_common_freqs") or []
            if len(vals) != len(freqs):
                raise ValueError("Excluded column {0}: most_common_vals and most_common_freqs differ in length".format(
                    entry["column"]))
        columns[entry["column"]] = ExcludedColumn(entry["column"], strategy, stats)

    return GenerationConfig(
        prod_fraction=float(prod_fraction),
        insert_batch_size=batch_size,
        start_date=dates["startDate"],
        end_date=dates["endDate"],
        excluded_schemas=tuple(excluded.get("schemas") or ()),
        excluded_tables=tuple(excluded.get("tables") or ()),
        excluded_columns=columns or None)


def load_config(path):
    if not path:
        return parse_config({"prodFraction": DEFAULT_PROD_FRACTION})
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        return parse_config(raw)
    except IOError:
        print("Error: Config file not found: {0}".format(path), file=sys.stderr)
        sys.exit(1)
    except (json.JSONDecodeError, ValueError) as e:
        print("Error: Invalid config: {0}".format(e), file=sys.stderr)
        sys.exit(1)


def parse_metadata(raw):
    if not isinstance(raw, dict) or not isinstance(raw.get("tables"), list):
        raise ValueError("Metadata must be an object with a 'tables' array")
    tables = [table_details_from_dict(t) for t in raw["tables"]]
    return MetadataDocument(tables, list(raw.get("warnings") or []), list(raw.get("cycles") or []))


def load_metadata(path):
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        return parse_metadata(raw)
    except IOError:
        print("Error: Metadata file not found: {0}".format(path), file=sys.stderr)
        sys.exit(1)
    except (json.JSONDecodeError, ValueError, KeyError) as e:
        print("Error: Invalid metadata: {0}".format(e), file=sys.stderr)
        sys.exit(1)


def write_metadata(path, document):
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(document, f, indent=2, default=json_default)


class MockDataGenerator(object):
    """Generates and inserts rows table by table in foreign key order"""

    def __init__(self, pool, config, fk_pool=None, rng=None, fk_sample_size=DEFAULT_FK_SAMPLE_SIZE):
        self.pool, self.config = pool, config
        self.fk_pool = fk_pool if fk_pool is not None else ForeignKeyPool(pool)
        self.row_generator = RowGenerator(config, rng)
        self.fk_sample_size = fk_sample_size
        self.inserted_rows = {}

    def order_tables(self, tables):
        """Drop excluded tables and sort the rest with the dependency graph."""
        kept = [t for t in tables
                if not is_excluded_schema(self.config, t.schema_name)
                and not is_excluded_table(self.config, t.schema_name, t.table_name)]
        by_key = {table_key(t.schema_name, t.table_name): t for t in kept}
        graph = build_graph_from_details(kept)
        load_order = compute_load_order(graph)
        for warning in load_order.warnings:
            print("WARNING: {0}".format(warning), file=sys.stderr)
        return [by_key[table_key(t.schema_name, t.table_name)] for t in load_order.ordered_tables]

    async def _lookup_reference(self, node, ref):
        referenced = table_key(ref.referenced_schema, ref.referenced_table)
        try:
            values = await self.fk_pool.get(
                ref.referenced_schema, ref.referenced_table, ref.referenced_columns, self.fk_sample_size)
        except Exception as e:
            raise GenerationAbortedError(
                "Failed to get foreign key values for {0} referencing {1}".format(node, referenced),
                table=node, referenced_table=referenced) from e
        print("Got {0} foreign key values from {1}".format(len(values), referenced))
        return values

    async def resolve_foreign_keys(self, table):
        """
        Fetch candidate values for every reference of a table.

        Lookups for distinct referenced columns run concurrently. A nullable
        self reference cannot point at rows of its own table yet, so its
        columns are returned as always NULL instead.

        Returns: (dict of referencing column -> values, set of NULL-only columns)
        """
        node = table_key(table.schema_name, table.table_name)
        nullable = {c.column_name for c in table.columns if c.is_nullable == "YES"}
        null_columns = set()
        pending = []
        for ref in table.references:
            is_self = (ref.referenced_schema, ref.referenced_table) == (table.schema_name, table.table_name)
            if is_self and ref.referencing_columns and all(c in nullable for c in ref.referencing_columns):
                debug_print("{0}: Self reference on {1} left NULL".format(node, ref.referencing_columns))
                null_columns.update(ref.referencing_columns)
                continue
            pending.append(ref)

        unique_refs = {}
        for ref in pending:
            key = ForeignKeyPool.cache_key(ref.referenced_schema, ref.referenced_table, ref.referenced_columns)
            unique_refs.setdefault(key, ref)

        results = await asyncio.gather(
            *[self._lookup_reference(node, ref) for ref in unique_refs.values()], return_exceptions=True)
        values_by_key = {}
        for key, result in zip(unique_refs, results):
            if isinstance(result, BaseException):
                raise result
            values_by_key[key] = result

        candidates = {}
        for ref in pending:
            key = ForeignKeyPool.cache_key(ref.referenced_schema, ref.referenced_table, ref.referenced_columns)
            candidates[ref.referencing_columns[0]] = values_by_key[key]
        return candidates, null_columns

    async def insert_rows(self, table, colnames, rows):
        if not rows:
            return
        types = {c.column_name: c.data_type for c in table.columns}
        casts = {c: text_cast_type(types.get(c)) for c in colnames if text_cast_type(types.get(c))}
        params = []
        for row in rows:
            params.extend(to_pg_param(types.get(c), row[c], c in casts) for c in colnames)
        query = render_insert_statement(table.schema_name, table.table_name, colnames, len(rows), casts)
        await self.pool.execute(query, *params)

    def effective_batch_size(self, node, width):
        batch_size = self.config.insert_batch_size or DEFAULT_INSERT_BATCH_SIZE
        if width and batch_size * width > MAX_QUERY_PARAMETERS:
            limited = max(1, MAX_QUERY_PARAMETERS // width)
            print("WARNING: {0}: batch of {1} rows x {2} columns exceeds {3} parameters, using {4} rows".format(
                node, batch_size, width, MAX_QUERY_PARAMETERS, limited), file=sys.stderr)
            return limited
        return batch_size

    async def generate_table(self, progress, table):
        node = table_key(table.schema_name, table.table_name)
        target_rows = int(math.ceil(table.row_count * self.config.prod_fraction))
        if target_rows <= 0:
            print("Skipping {0}: no rows captured".format(node))
            return 0
        print("Generating data for {0}".format(node))

        candidates, null_columns = await self.resolve_foreign_keys(table)
        plan = self.row_generator.plan_columns(table, candidates, null_columns)
        colnames = [entry.column.column_name for entry in plan]
        batch_size = self.effective_batch_size(node, len(colnames))

        inserted = 0
        for start in range(0, target_rows, batch_size):
            current = min(batch_size, target_rows - start)
            rows = self.row_generator.generate_batch(plan, current)
            try:
                await self.insert_rows(table, colnames, rows)
            except Exception as e:
                raise GenerationAbortedError("Failed to insert rows into {0}".format(node), table=node) from e
            inserted += current
            self.inserted_rows[node] = inserted
            print("Table {0} {1}: Inserted {2}/{3} rows".format(progress, node, inserted, target_rows))
        return inserted

    async def populate(self, tables):
        """
        Generate every non-excluded table in dependency order.

        Stops at the first failing table; rows inserted before stay in place.

        Returns: dict of "schema.table" -> rows inserted
        """
        ordered = self.order_tables(tables)
        for i, table in enumerate(ordered):
            node = table_key(table.schema_name, table.table_name)
            try:
                await self.generate_table("{0}/{1}".format(i + 1, len(ordered)), table)
            except GenerationAbortedError:
                raise
            except Exception as e:
                raise GenerationAbortedError("Error generating data for {0}".format(node), table=node) from e
        print("Data generation completed successfully.")
        return dict(self.inserted_rows)


async def run_generate(args):
    config = load_config(args.config)
    metadata = load_metadata(args.tables)
    for warning in metadata.warnings:
        debug_print("Extraction warning: {0}".format(warning))
    rng = random.Random(args.seed) if args.seed is not None else None
    pool = await asyncpg.create_pool(dsn=args.dsn)
    try:
        gen = MockDataGenerator(pool, config, rng=rng, fk_sample_size=args.fk_sample_size)
        inserted = await gen.populate(metadata.tables)
    finally:
        await pool.close()
    print("Inserted {0} rows into {1} table(s)".format(sum(inserted.values()), len(inserted)))


async def run_extract(args):
    config = load_config(args.config)
    pool = await asyncpg.create_pool(dsn=args.dsn)
    try:
        introspector = SchemaIntrospector(pool, config)
        document = await introspector.extract(args.schema, args.table)
    finally:
        await pool.close()
    out_path = os.path.join(args.out_dir, METADATA_FILE_NAME)
    write_metadata(out_path, document)
    print("Wrote statistics for {0} table(s) to {1}".format(len(document["tables"]), out_path))


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Generate mock PostgreSQL data from captured planner statistics")
    p.add_argument("--debug", action="store_true", help="Enable debug output")
    sub = p.add_subparsers(dest="command", required=True)

    ex = sub.add_parser("extract", help="Capture table statistics from a source database")
    ex.add_argument("--dsn", required=True, help="Source connection string (postgresql://...)")
    ex.add_argument("--config", default=None, help="JSON config file path")
    ex.add_argument("--out-dir", default=DEFAULT_OUTPUT_DIR, help="Output directory (default: {0})".format(DEFAULT_OUTPUT_DIR))
    ex.add_argument("--schema", default=None, help="Only process this schema")
    ex.add_argument("--table", default=None, help="Only process this table (requires --schema)")

    gen = sub.add_parser("generate", help="Populate a target database from captured statistics")
    gen.add_argument("--dsn", required=True, help="Target connection string (postgresql://...)")
    gen.add_argument("--tables", required=True, help="Metadata file written by 'extract'")
    gen.add_argument("--config", default=None, help="JSON config file path")
    gen.add_argument("--seed", type=int, default=None, help="Random seed")
    gen.add_argument("--fk-sample-size", type=int, default=DEFAULT_FK_SAMPLE_SIZE,
                     help="Foreign key values sampled per referenced column (default: {0})".format(DEFAULT_FK_SAMPLE_SIZE))

    args = p.parse_args(argv)
    if args.command == "extract" and args.table and not args.schema:
        p.error("--table requires --schema")
    return args


def main(argv=None):
    args = parse_args(argv)
    GLOBALS["debug"] = args.debug
    try:
        if args.command == "extract":
            asyncio.run(run_extract(args))
        else:
            asyncio.run(run_generate(args))
    except Exception as e:
        print("Error: {0}".format(describe_error_chain(e)), file=sys.stderr)
        if GLOBALS["debug"]:
            import traceback
            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
