#!/usr/bin/env python3
"""Unit tests for SchemaIntrospector class"""
import unittest

from generate_mock_data_utils import GenerationConfig
from schema_introspector import (
    SchemaIntrospector, BASE_TABLES_QUERY, FOREIGN_KEY_DEPENDENCIES_QUERY, TABLE_COLUMNS_QUERY,
    PLANNER_STATS_QUERY, FOREIGN_KEY_QUERY, HAS_PARTITIONS_QUERY, PARTITION_ROW_COUNT_QUERY,
    TABLE_ROW_COUNT_QUERY
)


def column_row(name, data_type, is_nullable="NO", default=None):
    return {"column_name": name, "data_type": data_type, "is_nullable": is_nullable,
            "column_default": default, "is_generated": "NEVER", "generation_expression": None, "is_identity": "NO"}


class MockPool:
    """Mock asyncpg pool of a source database with users, orders and events"""

    def __init__(self):
        self.tables = [
            {"schema_name": "pg_catalog", "table_name": "pg_class"},
            {"schema_name": "public", "table_name": "orders"},
            {"schema_name": "public", "table_name": "users"},
            {"schema_name": "public", "table_name": "events"},
        ]
        self.dependencies = [
            {"schema_name": "public", "table_name": "orders",
             "referenced_schema": "public", "referenced_table": "users"},
        ]
        self.columns = {
            ("public", "users"): [column_row("id", "integer", default="nextval('users_id_seq'::regclass)"),
                                  column_row("status", "text")],
            ("public", "orders"): [column_row("id", "bigint"), column_row("user_id", "integer")],
            ("public", "events"): [column_row("at", "timestamp with time zone")],
        }
        self.stats = {
            ("public", "users"): [{
                "column_name": "status", "n_distinct": 2.0, "null_frac": 0.0, "avg_width": 6,
                "correlation": 0.5, "most_common_vals": '["active", "inactive"]',
                "most_common_freqs": [0.75, 0.25], "histogram_bounds": None}],
            ("public", "orders"): [{
                "column_name": "user_id", "n_distinct": -0.5, "null_frac": 0.0, "avg_width": 4,
                "correlation": None, "most_common_vals": None, "most_common_freqs": None,
                "histogram_bounds": "[1, 50, 100]"}],
            ("public", "events"): [],
        }
        self.references = {
            ("public", "orders"): [{"referenced_schema": "public", "referenced_table": "users",
                                    "referencing_columns": '["user_id"]', "referenced_columns": '["id"]'}],
        }
        self.estimates = {("public", "users"): 1200, ("public", "orders"): 0}
        self.partition_estimates = {("public", "events"): 900}
        self.partitioned = {("public", "events")}
        self.exact = {'"public"."orders"': 7}
        self.broken = set()
        self.stats_inherited = {}

    async def fetch(self, query, *args):
        if query == BASE_TABLES_QUERY:
            return self.tables
        if query == FOREIGN_KEY_DEPENDENCIES_QUERY:
            return self.dependencies
        key = (args[0], args[1])
        if key in self.broken:
            raise RuntimeError("permission denied for table {0}".format(args[1]))
        if query == TABLE_COLUMNS_QUERY:
            return self.columns[key]
        if query == PLANNER_STATS_QUERY:
            self.stats_inherited[key] = args[2]
            return self.stats[key]
        if query == FOREIGN_KEY_QUERY:
            return self.references.get(key, [])
        raise AssertionError("unexpected query: {0}".format(query))

    async def fetchval(self, query, *args):
        if query == HAS_PARTITIONS_QUERY:
            return (args[0], args[1]) in self.partitioned
        if query == PARTITION_ROW_COUNT_QUERY:
            return self.partition_estimates.get((args[0], args[1]))
        if query == TABLE_ROW_COUNT_QUERY:
            return self.estimates.get((args[0], args[1]), 0)
        for name, count in self.exact.items():
            if name in query:
                return count
        return 0


class TestSchemaIntrospector(unittest.IsolatedAsyncioTestCase):
    """Test cases for SchemaIntrospector functionality"""

    def setUp(self):
        """Set up test fixtures"""
        self.pool = MockPool()
        self.config = GenerationConfig(prod_fraction=0.1)

    def by_name(self, document):
        return {t["table_name"]: t for t in document["tables"]}

    async def test_tables_in_load_order(self):
        """Referenced tables are listed before referencing ones, system schemas left out"""
        document = await SchemaIntrospector(self.pool, self.config).extract()
        names = [t["table_name"] for t in document["tables"]]

        self.assertEqual(sorted(names), ["events", "orders", "users"])
        self.assertLess(names.index("users"), names.index("orders"))
        self.assertEqual(document["cycles"], [])
        self.assertEqual(document["warnings"], [])

    async def test_statistics_are_decoded_with_data_type(self):
        """JSON encoded arrays come back as lists, tagged with the column type"""
        tables = self.by_name(await SchemaIntrospector(self.pool, self.config).extract())

        users_stats = tables["users"]["statistics"]["plannerStats"][0]
        self.assertEqual(users_stats["most_common_vals"], ["active", "inactive"])
        self.assertEqual(users_stats["most_common_freqs"], [0.75, 0.25])
        self.assertEqual(users_stats["data_type"], "text")

        orders_stats = tables["orders"]["statistics"]["plannerStats"][0]
        self.assertEqual(orders_stats["histogram_bounds"], [1, 50, 100])
        self.assertEqual(orders_stats["data_type"], "integer")

    async def test_references_decoded(self):
        tables = self.by_name(await SchemaIntrospector(self.pool, self.config).extract())
        ref = tables["orders"]["references"][0]
        self.assertEqual(ref["referencing_columns"], ["user_id"])
        self.assertEqual(ref["referenced_columns"], ["id"])
        self.assertEqual(tables["users"]["references"], [])

    async def test_row_counts(self):
        """Estimates are used when present, exact counts otherwise, partitions summed"""
        tables = self.by_name(await SchemaIntrospector(self.pool, self.config).extract())
        self.assertEqual(tables["users"]["statistics"]["rowCount"], 1200)
        self.assertEqual(tables["orders"]["statistics"]["rowCount"], 7)
        self.assertEqual(tables["events"]["statistics"]["rowCount"], 900)

    async def test_partitioned_parent_reads_inherited_stats(self):
        await SchemaIntrospector(self.pool, self.config).extract()
        self.assertTrue(self.pool.stats_inherited[("public", "events")])
        self.assertFalse(self.pool.stats_inherited[("public", "users")])

    async def test_failed_table_becomes_warning(self):
        """A table that cannot be read is reported and left out"""
        self.pool.broken.add(("public", "events"))
        document = await SchemaIntrospector(self.pool, self.config).extract()

        self.assertNotIn("events", self.by_name(document))
        self.assertEqual(len(document["tables"]), 2)
        self.assertEqual(len(document["warnings"]), 1)
        self.assertTrue(document["warnings"][0].startswith("Failed to process public.events:"))

    async def test_schema_and_table_filter(self):
        document = await SchemaIntrospector(self.pool, self.config).extract("public", "orders")
        self.assertEqual([t["table_name"] for t in document["tables"]], ["orders"])

    async def test_excluded_schema_skipped(self):
        config = GenerationConfig(prod_fraction=0.1, excluded_schemas=("public",))
        document = await SchemaIntrospector(self.pool, config).extract()
        self.assertEqual(document["tables"], [])

    async def test_cycles_reported(self):
        self.pool.dependencies.append({"schema_name": "public", "table_name": "users",
                                       "referenced_schema": "public", "referenced_table": "orders"})
        document = await SchemaIntrospector(self.pool, self.config).extract()
        self.assertEqual(len(document["cycles"]), 1)
        self.assertIn("Circular dependencies detected. The ordering may not be perfect.", document["warnings"])


if __name__ == "__main__":
    unittest.main()
