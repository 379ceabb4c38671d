"""Replacement decisions for misconfigured process groups."""

from .engine import ReplacementBudget, derive_budget, replace_misconfigured_process_groups
from .evaluator import process_group_needs_removal

__all__ = [
    "ReplacementBudget",
    "derive_budget",
    "process_group_needs_removal",
    "replace_misconfigured_process_groups",
]
