#!/usr/bin/env python3
"""Row assembly: drives the value sampler across the columns of one table"""
import random
import sys
from collections import namedtuple

from generate_mock_data_utils import (
    debug_print, table_key, is_sequence_column, find_excluded_column, describe_n_distinct, ColumnProfile
)
from value_sampler import sample_value

ColumnPlan = namedtuple("ColumnPlan", ["column", "profile", "fk_candidates", "always_null"])


def apply_override(column, profile, stats):
    """
    Replace the captured common values, frequencies and null fraction with
    the configured ones. The histogram is dropped so only the override is
    sampled.
    """
    stats = stats or {}
    if profile is None:
        profile = ColumnProfile(column.column_name, None, 0.0, None, None, None, None, None, column.data_type)
    return profile._replace(
        most_common_vals=list(stats.get("most_common_vals") or []),
        most_common_freqs=[float(f) for f in stats.get("most_common_freqs") or []],
        null_frac=float(stats.get("null_frac") or 0.0),
        histogram_bounds=None)


class RowGenerator(object):
    """
    Responsible for generating rows for one table at a time.

    Handles:
    - Skipping database computed columns (GENERATED ALWAYS, sequences, serial)
    - Column exclusion rules ("skip") and statistic overrides ("override")
    - Matching foreign key candidates to referencing columns
    - Row-by-row sampling through sample_value
    """

    def __init__(self, config, rng=None):
        """
        Args:
            config: GenerationConfig
            rng: random.Random used for every draw (module random if omitted)
        """
        self.config = config
        self.rng = rng if rng is not None else random

    def plan_columns(self, table, fk_candidates=None, null_columns=()):
        """
        Decide, once per table, which columns get a value and how.

        Args:
            table: TableDetails
            fk_candidates: dict of referencing column -> list of existing values
            null_columns: columns that are always NULL (nullable self references)

        Returns:
            List of ColumnPlan in column order. Columns without a profile are
            reported and left out so the database default applies.
        """
        fk_candidates = fk_candidates or {}
        node = table_key(table.schema_name, table.table_name)
        profiles = {p.column_name: p for p in table.profiles}
        plan = []

        for column in table.columns:
            cname = column.column_name

            if column.is_generated == "ALWAYS":
                continue
            if is_sequence_column(column):
                continue

            rule = find_excluded_column(self.config, table.schema_name, table.table_name, cname)
            if rule is not None and rule.strategy == "skip":
                debug_print("{0}: Skipping excluded column {1}".format(node, cname))
                continue

            if cname in null_columns:
                plan.append(ColumnPlan(column, profiles.get(cname), None, True))
                continue

            profile = profiles.get(cname)
            if rule is not None and rule.strategy == "override":
                debug_print("{0}: Overriding statistics of column {1}".format(node, cname))
                profile = apply_override(column, profile, rule.stats)

            if profile is None:
                print("WARNING: No statistics found for column {0}.{1}".format(node, cname), file=sys.stderr)
                continue

            debug_print("{0}.{1}: {2}, null_frac {3}".format(
                node, cname, describe_n_distinct(profile.n_distinct), profile.null_frac))
            plan.append(ColumnPlan(column, profile, fk_candidates.get(cname), False))

        return plan

    def generate_row(self, plan):
        row = {}
        for entry in plan:
            if entry.always_null:
                row[entry.column.column_name] = None
                continue
            row[entry.column.column_name] = sample_value(
                entry.column, entry.profile, entry.fk_candidates, self.config, self.rng)
        return row

    def generate_batch(self, plan, count):
        """Generate count rows following a plan from plan_columns()."""
        return [self.generate_row(plan) for _ in range(count)]
