"""
Helpers for building raw SQL text safely.

Identifiers (schema, table, column and alias names) cannot be bound as query
parameters, so every identifier spliced into SQL text must pass
``assert_valid_identifier`` first. Values are bound as parameters everywhere
except in the report query compiler and template renderer, which render
literals through ``quote_literal``.
"""

import re

from app.core.exceptions import InvalidIdentifierError

IDENTIFIER_PATTERN = re.compile(r"[A-Za-z0-9_]+")


def assert_valid_identifier(name: str) -> None:
    """Raise InvalidIdentifierError unless ``name`` is a bare identifier."""
    if not isinstance(name, str) or not IDENTIFIER_PATTERN.fullmatch(name):
        raise InvalidIdentifierError(name)


def qualify(*parts: str) -> str:
    """Join validated identifiers with dots, e.g. ``schema.table.column``."""
    for part in parts:
        assert_valid_identifier(part)
    return ".".join(parts)


def quote_literal(value: object) -> str:
    """Render ``value`` as a single-quoted SQL string literal."""
    return "'" + str(value).replace("'", "''") + "'"


class TrustedSqlFragment(str):
    """
    SQL text authored by a trusted administrator.

    Join predicates and report query templates are spliced into queries
    verbatim. Code that does so only accepts this type. Request models carry
    plain strings; wrapping happens only after the author has been checked
    against the report manager roles.
    """

    __slots__ = ()

    def __repr__(self) -> str:
        return f"TrustedSqlFragment({str.__repr__(self)})"


def require_trusted(fragment: object, what: str) -> TrustedSqlFragment:
    if not isinstance(fragment, TrustedSqlFragment):
        raise TypeError(f"{what} must be a TrustedSqlFragment, got {type(fragment).__name__}")
    return fragment
