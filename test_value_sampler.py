#!/usr/bin/env python3
"""Unit tests for statistical value sampling"""
import unittest
import random
import uuid
from datetime import datetime, date, timezone
from decimal import Decimal

from generate_mock_data_errors import DataQualityError, UnsupportedSchemaError
from generate_mock_data_utils import ColumnDescriptor, ColumnProfile, GenerationConfig
from value_sampler import (
    BaseType, TYPE_HANDLERS, NO_VALUE, resolve_base_type, sample_value,
    sample_from_frequencies, sample_from_histogram, text_cast_type
)


def column(name, data_type, is_nullable="NO", default=None):
    return ColumnDescriptor(name, data_type, is_nullable, default, "NEVER", None)


def profile(name, data_type, null_frac=0.0, vals=None, freqs=None, bounds=None):
    return ColumnProfile(name, -1.0, null_frac, 8, None, vals, freqs, bounds, data_type)


class TestValueSampler(unittest.TestCase):
    """Test cases for sample_value precedence and type handling"""

    def setUp(self):
        self.rng = random.Random(42)
        self.config = GenerationConfig(prod_fraction=0.1)

    def draw(self, col, prof, n=500, fk=None):
        return [sample_value(col, prof, fk, self.config, self.rng) for _ in range(n)]

    def test_every_base_type_has_a_handler(self):
        """The handler table covers the whole BaseType enum"""
        for base_type in BaseType:
            self.assertIn(base_type, TYPE_HANDLERS)

    def test_resolve_base_type(self):
        """Declared types are reduced to their first word"""
        self.assertIs(resolve_base_type("timestamp with time zone"), BaseType.TIMESTAMP)
        self.assertIs(resolve_base_type("double precision"), BaseType.DOUBLE)
        self.assertIs(resolve_base_type("USER-DEFINED"), BaseType.USER_DEFINED)
        self.assertIsNone(resolve_base_type("tsvector"))

    def test_foreign_key_candidates_take_precedence(self):
        """FK candidates win over null_frac and common values"""
        col = column("user_id", "integer")
        prof = profile("user_id", "integer", null_frac=1.0, vals=[99], freqs=[1.0])
        values = self.draw(col, prof, fk=[1, 2, 3])
        self.assertTrue(all(v in (1, 2, 3) for v in values))
        self.assertEqual(set(values), {1, 2, 3})

    def test_null_fraction_one_always_null(self):
        """A column that is always NULL in production stays NULL"""
        col = column("note", "text", "YES")
        prof = profile("note", "text", null_frac=1.0, vals=["x"], freqs=[1.0])
        self.assertEqual(set(self.draw(col, prof)), {None})

    def test_common_value_ratio_follows_frequencies(self):
        """Weighted common values reproduce the captured frequencies"""
        col = column("status", "text")
        prof = profile("status", "text", vals=["active", "inactive"], freqs=[0.6, 0.4])
        values = self.draw(col, prof, n=10000)

        self.assertEqual(set(values), {"active", "inactive"})
        ratio = values.count("active") / float(len(values))
        self.assertAlmostEqual(ratio, 0.6, delta=0.02)

    def test_null_rate_follows_null_fraction(self):
        """A partial null_frac is reproduced over many draws"""
        col = column("nickname", "text", "YES")
        prof = profile("nickname", "text", null_frac=0.3, vals=["al", "bo"], freqs=[0.5, 0.5])
        values = self.draw(col, prof, n=20000)
        rate = values.count(None) / float(len(values))
        self.assertAlmostEqual(rate, 0.3, delta=0.02)

    def test_frequencies_need_not_sum_to_one(self):
        """Only listed values come back even when frequencies are partial"""
        prof = profile("c", "text", vals=["x", "y"], freqs=[0.2, 0.2])
        for _ in range(200):
            self.assertIn(sample_from_frequencies(prof, self.rng), ("x", "y"))
        self.assertIs(sample_from_frequencies(profile("c", "text"), self.rng), NO_VALUE)

    def test_integer_values_stay_inside_histogram(self):
        """Continuous integers are interpolated between the outer bounds"""
        col = column("qty", "integer")
        prof = profile("qty", "integer", bounds=[100, 150, 200])
        values = self.draw(col, prof)
        for v in values:
            self.assertIsInstance(v, int)
            self.assertGreaterEqual(v, 100)
            self.assertLessEqual(v, 200)

    def test_bigint_histogram_beyond_float_precision(self):
        """Large bigint bounds are drawn exactly, never rounded outside the range"""
        lo, hi = 1500000000000000001, 1500000000000000101
        col = column("snowflake_id", "bigint")
        for bounds in ([lo, hi], [str(lo), str(hi)]):
            values = self.draw(col, profile("snowflake_id", "bigint", bounds=bounds), n=200)
            for v in values:
                self.assertIsInstance(v, int)
                self.assertTrue(lo <= v <= hi, v)
            self.assertGreater(len(set(values)), 1)

    def test_common_values_mix_with_histogram(self):
        """Values are either a common value or inside the histogram range"""
        col = column("qty", "integer")
        prof = profile("qty", "integer", vals=[500], freqs=[0.3], bounds=[10, 20])
        values = self.draw(col, prof, n=2000)
        self.assertIn(500, values)
        for v in values:
            self.assertTrue(v == 500 or 10 <= v <= 20, v)

    def test_numeric_values_are_decimal(self):
        """numeric columns are bound as Decimal"""
        col = column("price", "numeric")
        prof = profile("price", "numeric", bounds=["1.5", "9.5"])
        for v in self.draw(col, prof, n=100):
            self.assertIsInstance(v, Decimal)
            self.assertTrue(Decimal("1.5") <= v <= Decimal("9.5"))

    def test_timestamp_with_time_zone_inside_histogram(self):
        """Aware timestamps are interpolated between the bound instants"""
        col = column("created_at", "timestamp with time zone")
        prof = profile("created_at", "timestamp with time zone",
                       bounds=["2023-01-01 00:00:00+00", "2023-12-31 00:00:00+00"])
        lo = datetime(2023, 1, 1, tzinfo=timezone.utc)
        hi = datetime(2023, 12, 31, tzinfo=timezone.utc)
        for v in self.draw(col, prof, n=200):
            self.assertIsNotNone(v.tzinfo)
            self.assertTrue(lo <= v <= hi, v)

    def test_timestamp_without_time_zone_is_naive(self):
        """Naive timestamp columns get naive UTC datetimes"""
        col = column("seen_at", "timestamp without time zone")
        prof = profile("seen_at", "timestamp without time zone",
                       bounds=["2022-06-01 00:00:00", "2022-06-30 00:00:00"])
        for v in self.draw(col, prof, n=100):
            self.assertIsNone(v.tzinfo)
            self.assertTrue(datetime(2022, 6, 1) <= v <= datetime(2022, 6, 30), v)

    def test_date_values_inside_histogram(self):
        """date columns come back as dates"""
        col = column("born_on", "date")
        prof = profile("born_on", "date", bounds=["2020-01-01", "2020-01-31"])
        for v in self.draw(col, prof, n=100):
            self.assertIsInstance(v, date)
            self.assertNotIsInstance(v, datetime)
            self.assertTrue(date(2020, 1, 1) <= v <= date(2020, 1, 31), v)

    def test_temporal_fallback_uses_configured_range(self):
        """Without a histogram, timestamps fall between start_date and end_date"""
        config = GenerationConfig(
            prod_fraction=0.1,
            start_date=datetime(2021, 1, 1, tzinfo=timezone.utc),
            end_date=datetime(2021, 2, 1, tzinfo=timezone.utc))
        col = column("created_at", "timestamp with time zone")
        prof = profile("created_at", "timestamp with time zone")
        for _ in range(100):
            v = sample_value(col, prof, None, config, self.rng)
            self.assertTrue(config.start_date <= v <= config.end_date, v)

    def test_histogram_needs_two_bounds(self):
        """A single bound cannot be interpolated"""
        self.assertIs(sample_from_histogram(profile("c", "integer", bounds=[5]), False, self.rng), NO_VALUE)
        self.assertIs(sample_from_histogram(profile("c", "integer", bounds=["a", "b"]), False, self.rng), NO_VALUE)

    def test_type_fallbacks(self):
        """Types without statistics fall back to their generators"""
        small = self.draw(column("s", "smallint"), profile("s", "smallint"), n=200)
        self.assertTrue(all(0 <= v <= 32767 for v in small))

        for v in self.draw(column("u", "uuid"), profile("u", "uuid"), n=20):
            self.assertEqual(uuid.UUID(v).version, 4)

        for v in self.draw(column("t", "character varying"), profile("t", "character varying"), n=20):
            self.assertTrue(v.startswith("value_"))

        for v in self.draw(column("b", "boolean"), profile("b", "boolean"), n=20):
            self.assertIn(v, (True, False))

    def test_text_cast_type(self):
        """Types without a dedicated handler are cast from text on insert"""
        self.assertEqual(text_cast_type("time without time zone"), "time without time zone")
        self.assertEqual(text_cast_type("interval"), "interval")
        self.assertEqual(text_cast_type("bytea"), "bytea")
        self.assertIsNone(text_cast_type("bigint"))
        self.assertIsNone(text_cast_type("timestamp with time zone"))
        self.assertIsNone(text_cast_type("USER-DEFINED"))
        self.assertIsNone(text_cast_type("ARRAY"))
        self.assertIsNone(text_cast_type(None))

    def test_unknown_type_uses_column_default(self):
        """Unsupported types use the stripped default expression"""
        col = column("doc", "tsvector", default="'empty'::tsvector")
        self.assertEqual(set(self.draw(col, profile("doc", "tsvector"), n=20)), {"empty"})

    def test_unknown_type_nullable_without_default_is_null(self):
        col = column("doc", "tsvector", is_nullable="YES")
        self.assertEqual(set(self.draw(col, profile("doc", "tsvector"), n=20)), {None})

    def test_unknown_type_not_null_without_default_fails(self):
        """Unsupported NOT NULL columns without a default cannot be filled"""
        col = column("doc", "tsvector")
        with self.assertRaises(UnsupportedSchemaError):
            sample_value(col, profile("doc", "tsvector"), None, self.config, self.rng)

    def test_enum_without_common_values_fails(self):
        """An enum column with nothing to choose from is a data quality problem"""
        col = column("status", "USER-DEFINED")
        with self.assertRaises(DataQualityError):
            sample_value(col, profile("status", "USER-DEFINED"), None, self.config, self.rng)

    def test_enum_mostly_null_without_common_values_is_null(self):
        col = column("status", "USER-DEFINED", is_nullable="YES")
        values = self.draw(col, profile("status", "USER-DEFINED", null_frac=0.5), n=100)
        self.assertEqual(set(values), {None})

    def test_enum_falls_back_to_first_common_value(self):
        """Enum values always come from the captured common values"""
        col = column("status", "USER-DEFINED")
        prof = profile("status", "USER-DEFINED", vals=["active", "inactive"], freqs=[0.1, 0.1])
        values = set(self.draw(col, prof, n=500))
        self.assertTrue(values <= {"active", "inactive"})
        self.assertIn("active", values)

    def test_json_always_uses_common_values(self):
        """json columns never get synthesized documents"""
        col = column("payload", "jsonb")
        prof = profile("payload", "jsonb", vals=[{"a": 1}], freqs=[0.01])
        self.assertTrue(all(v == {"a": 1} for v in self.draw(col, prof, n=50)))

        with self.assertRaises(DataQualityError):
            sample_value(col, profile("payload", "jsonb"), None, self.config, self.rng)


if __name__ == "__main__":
    unittest.main()
