"""Dialect driver adapters sharing one capability set."""

from .base import DialectDriver, SchemaFacts, classify_statement, limit_wrapper, strip_statement
from .registry import DriverRegistry

__all__ = [
    "DialectDriver",
    "DriverRegistry",
    "SchemaFacts",
    "classify_statement",
    "limit_wrapper",
    "strip_statement",
]
