#!/usr/bin/env python3
"""Run-scoped cache of existing key values sampled from referenced tables"""
import sys

from generate_mock_data_errors import DataQualityError, UnsupportedSchemaError
from generate_mock_data_utils import debug_print, qualified_name, quote_ident, table_key

DEFAULT_FK_SAMPLE_SIZE = 1000

# reltuples is trusted from this many rows on; below it the table is counted
EXACT_COUNT_THRESHOLD = 1000

# Tables this small are queried directly instead of sampled
DIRECT_QUERY_THRESHOLD = 1000

# From this size on, block level SYSTEM sampling replaces row level BERNOULLI
SYSTEM_SAMPLING_THRESHOLD = 1000000

BERNOULLI_OVERSAMPLE = 2
SYSTEM_OVERSAMPLE = 20000

ESTIMATED_ROW_COUNT_QUERY = """
    SELECT reltuples::bigint AS approximate_count
    FROM pg_class c
    JOIN pg_namespace n ON n.oid = c.relnamespace
    WHERE n.nspname = $1
    AND c.relname = $2
"""


def choose_sampling_method(row_count, sample_size):
    """
    Returns: (method, percentage) for a TABLESAMPLE clause.

    SYSTEM picks whole pages, so it is oversampled much harder than BERNOULLI.
    """
    if row_count < SYSTEM_SAMPLING_THRESHOLD:
        method, oversample = "BERNOULLI", BERNOULLI_OVERSAMPLE
    else:
        method, oversample = "SYSTEM", SYSTEM_OVERSAMPLE
    percentage = min(100.0, float(sample_size) / row_count * 100 * oversample)
    return method, percentage


class ForeignKeyPool(object):
    """
    Samples real values of a referenced column so generated rows only point
    at rows that exist in the target database.

    Entries are keyed "schema.table.column", filled on first use and never
    replaced for the rest of the run.
    """

    def __init__(self, pool):
        """
        Args:
            pool: asyncpg connection pool (or anything with fetch/fetchval)
        """
        self.pool = pool
        self.cache = {}

    @staticmethod
    def cache_key(schema, table, columns):
        return "{0}.{1}.{2}".format(schema, table, ",".join(columns))

    async def get(self, schema, table, columns, sample_size=DEFAULT_FK_SAMPLE_SIZE):
        """
        Sampled existing values of table.column.

        Raises:
            UnsupportedSchemaError: more than one column (composite key)
            DataQualityError: the table is empty or no non-NULL value was found
        """
        columns = list(columns)
        if len(columns) != 1:
            raise UnsupportedSchemaError("Composite foreign keys are not supported: {0}.{1} ({2})".format(
                schema, table, ", ".join(columns)))

        key = self.cache_key(schema, table, columns)
        if key in self.cache:
            return self.cache[key]

        values = await self._sample(schema, table, columns, sample_size)
        self.cache.setdefault(key, values)
        return self.cache[key]

    async def get_actual_row_count(self, schema, table):
        approximate = await self.pool.fetchval(ESTIMATED_ROW_COUNT_QUERY, schema, table)
        approximate = int(approximate or 0)
        # Freshly populated tables have stale or missing estimates
        if approximate < EXACT_COUNT_THRESHOLD:
            exact = await self.pool.fetchval("SELECT COUNT(*) FROM {0}".format(qualified_name(schema, table)))
            return int(exact or 0)
        return approximate

    async def _sample(self, schema, table, columns, sample_size):
        key = table_key(schema, table)
        row_count = await self.get_actual_row_count(schema, table)
        if row_count == 0:
            raise DataQualityError(
                "Referenced table {0} has no rows. Ensure tables are populated in the correct order.".format(key),
                table=key)

        if row_count < DIRECT_QUERY_THRESHOLD:
            debug_print("{0}: {1} rows, querying directly".format(key, row_count))
            values = await self._direct_query(schema, table, columns, sample_size)
        else:
            method, percentage = choose_sampling_method(row_count, sample_size)
            debug_print("{0}: {1} rows, TABLESAMPLE {2} ({3:.6f})".format(key, row_count, method, percentage))
            values = await self._table_sample(schema, table, columns, method, percentage, sample_size)

            if len(values) < sample_size / 2.0 and row_count < SYSTEM_SAMPLING_THRESHOLD:
                print("WARNING: Sampling returned insufficient values for {0}, trying direct query".format(key),
                      file=sys.stderr)
                direct = await self._direct_query(schema, table, columns, sample_size * 2)
                if len(direct) > len(values):
                    values = direct

        if not values:
            raise DataQualityError("No valid foreign key values found in {0} for columns: {1}".format(
                key, ", ".join(columns)), table=key)
        return values

    @staticmethod
    def _not_null_clause(columns):
        return " AND ".join("{0} IS NOT NULL".format(quote_ident(c)) for c in columns)

    async def _direct_query(self, schema, table, columns, limit):
        query = "SELECT {0} FROM {1} WHERE {2} ORDER BY random() LIMIT $1".format(
            ", ".join(quote_ident(c) for c in columns), qualified_name(schema, table),
            self._not_null_clause(columns))
        rows = await self.pool.fetch(query, int(limit))
        return [r[0] for r in rows]

    async def _table_sample(self, schema, table, columns, method, percentage, limit):
        query = "SELECT {0} FROM {1} TABLESAMPLE {2} ($1) WHERE {3} ORDER BY random() LIMIT $2".format(
            ", ".join(quote_ident(c) for c in columns), qualified_name(schema, table), method,
            self._not_null_clause(columns))
        rows = await self.pool.fetch(query, float(percentage), int(limit))
        return [r[0] for r in rows]
