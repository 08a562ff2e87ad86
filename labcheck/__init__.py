"""labcheck - validator engine for coding-challenge tasks."""

from .context import ValidationContext
from .results import TestCase, TestResults
from .runner import outcome_context, run_task, run_validators
from .validators.factory import create_validator

__version__ = "0.4.0"

__all__ = [
    "ValidationContext",
    "TestCase",
    "TestResults",
    "create_validator",
    "outcome_context",
    "run_task",
    "run_validators",
]
