"""Validator implementations.

The factory lives in labcheck.validators.factory; it is not re-exported
here because the docker validator in labcheck.sandbox builds on
labcheck.validators.base.
"""

from .base import BaseValidator
from .parser import ParamKind, ParamValue, ParsedValidator, parse_validator

__all__ = ["BaseValidator", "ParamKind", "ParamValue", "ParsedValidator", "parse_validator"]
