"""Utilities package for the production costing engine."""

from .money import ZERO, format_currency, round_currency, round_internal, to_decimal

__all__ = [
    "ZERO",
    "format_currency",
    "round_currency",
    "round_internal",
    "to_decimal",
]
