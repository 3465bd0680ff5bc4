#!/usr/bin/env python3
"""Pre-compiled regex patterns for type names and column default expressions

Patterns are compiled once at module import time rather than on every
generated row.
"""
import re


class CompiledPatterns:
    """
    Pre-compiled regex patterns used while inspecting column descriptors.
    """

    # Everything from the first whitespace on: "timestamp with time zone" -> "timestamp"
    TYPE_SUFFIX_PATTERN = re.compile(r"\s.*$", re.S)

    # Type cast suffix of a default expression: "'active'::status" -> "'active'"
    TYPE_CAST_PATTERN = re.compile(r"::.*$", re.S)

    # Sequence backed defaults: "nextval('users_id_seq'::regclass)"
    SEQUENCE_DEFAULT_PATTERN = re.compile(r"nextval\(", re.I)

    # serial, bigserial, smallserial
    SERIAL_TYPE_PATTERN = re.compile(r"serial", re.I)

    # Schemas that never hold user data (timescaledb internals)
    INTERNAL_SCHEMA_PATTERN = re.compile(r"^_timescaledb")

    # Declared type names safe to inline in a cast: "time without time zone", "bytea"
    CAST_TYPE_NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_ ]*$")

    # Whole numbers as pg_stats renders bigint bounds: "-42", "1500000000000000001"
    INTEGER_LITERAL_PATTERN = re.compile(r"^[+-]?\d+$")

