"""
Validation rule engine for staged records.
"""

from .rule_engine import RuleEngine

__all__ = [
    "RuleEngine",
]
