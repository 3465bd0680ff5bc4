#!/usr/bin/env python3
"""
Exception classes raised while synthesizing mock data.

Every failure carries the "schema.table" it happened in so an operator can
trace it back to the offending statistical input.
"""


class MockDataError(Exception):
    """Base class for all mock data generation errors."""

    def __init__(self, message):
        self.message = message
        super(MockDataError, self).__init__(message)


class UnsupportedSchemaError(MockDataError):
    """
    Raised for schema shapes the generator cannot handle.

    Composite foreign keys and columns of an unknown data type that have
    neither a default expression nor allow NULL end up here.
    """


class DataQualityError(MockDataError):
    """
    Raised when the captured statistics or the target database cannot
    produce a valid value.

    Examples: an enum column without common values, a referenced table
    with zero rows, or an empty foreign key sample.
    """

    def __init__(self, message, table=None):
        self.table = table
        super(DataQualityError, self).__init__(message)


class GenerationAbortedError(MockDataError):
    """
    Wraps the cause that stopped generation of a table.

    Attributes:
        table: "schema.table" being generated
        referenced_table: "schema.table" of the foreign key target, when the
            failure happened while resolving a reference
    """

    def __init__(self, message, table, referenced_table=None):
        self.table = table
        self.referenced_table = referenced_table
        super(GenerationAbortedError, self).__init__(message)


def describe_error_chain(exc):
    """Render an exception and its causes as 'outer: inner: root'."""
    parts = []
    seen = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        parts.append(str(exc) or exc.__class__.__name__)
        exc = exc.__cause__
    return ": ".join(parts)
