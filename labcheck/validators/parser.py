"""
Parser for the validator spec DSL.

    spec   := name [':' params]
    params := param (',' param)*
    param  := ('bool' | 'int' | 'string') '(' body ')'

Examples:
    tcp_listening:int(4221)
    http_get:string(/echo/hi),int(200),string(hi)
    docker:string(go1.22-race),string(fail_if:stderr contains DATA RACE),int(120)

Commas only separate parameters at parenthesis depth 0, so a string body
may contain commas and parentheses of its own.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple, Union

from ..errors import ValidatorSpecError

INT_MIN = -(2 ** 63)
INT_MAX = 2 ** 63 - 1
PORT_MAX = 65535

_INT_PATTERN = re.compile(r"-?[0-9]+")


class ParamKind(Enum):
    BOOL = "bool"
    INT = "int"
    STRING = "string"


@dataclass(frozen=True)
class ParamValue:
    """One typed parameter of a validator spec."""
    kind: ParamKind
    value: Union[bool, int, str]

    @classmethod
    def of_bool(cls, value: bool) -> "ParamValue":
        return cls(ParamKind.BOOL, value)

    @classmethod
    def of_int(cls, value: int) -> "ParamValue":
        return cls(ParamKind.INT, value)

    @classmethod
    def of_string(cls, value: str) -> "ParamValue":
        return cls(ParamKind.STRING, value)

    def __str__(self) -> str:
        if self.kind is ParamKind.BOOL:
            return "true" if self.value else "false"
        return str(self.value)


_TYPE_NAMES = {
    ParamKind.BOOL: "a boolean",
    ParamKind.INT: "an integer",
    ParamKind.STRING: "a string",
}


def _non_negative(index: int, value: int) -> int:
    if value < 0:
        raise ValidatorSpecError(f"parameter {index} must not be negative: {value}")
    return value


@dataclass(frozen=True)
class ParsedValidator:
    """A validator name plus its positional parameters, in source order."""
    name: str
    params: Tuple[ParamValue, ...] = ()

    def param(self, index: int) -> Optional[ParamValue]:
        if 0 <= index < len(self.params):
            return self.params[index]
        return None

    def _typed(self, index: int, kind: ParamKind):
        param = self.param(index)
        if param is None:
            raise ValidatorSpecError(f"missing parameter at index {index}")
        if param.kind is not kind:
            raise ValidatorSpecError(f"parameter {index} is not {_TYPE_NAMES[kind]}")
        return param.value

    def param_as_int(self, index: int) -> int:
        return self._typed(index, ParamKind.INT)

    def param_as_port(self, index: int) -> int:
        value = self.param_as_int(index)
        if not 0 <= value <= PORT_MAX:
            raise ValidatorSpecError(f"parameter {index} is not a valid port: {value}")
        return value

    def param_as_count(self, index: int) -> int:
        """An integer that must not be negative (counts, milliseconds, seconds)."""
        return _non_negative(index, self.param_as_int(index))

    def optional_count(self, index: int, default: Optional[int] = None) -> Optional[int]:
        value = self.optional_int(index, default)
        if value is None:
            return None
        return _non_negative(index, value)

    def param_as_string(self, index: int) -> str:
        return self._typed(index, ParamKind.STRING)

    def param_as_bool(self, index: int) -> bool:
        return self._typed(index, ParamKind.BOOL)

    def optional_int(self, index: int, default: Optional[int] = None) -> Optional[int]:
        param = self.param(index)
        if param is None or param.kind is not ParamKind.INT:
            return default
        return param.value

    def optional_string(self, index: int, default: Optional[str] = None) -> Optional[str]:
        param = self.param(index)
        if param is None or param.kind is not ParamKind.STRING:
            return default
        return param.value

    def optional_bool(self, index: int, default: Optional[bool] = None) -> Optional[bool]:
        param = self.param(index)
        if param is None or param.kind is not ParamKind.BOOL:
            return default
        return param.value

    def strings_from(self, index: int) -> List[str]:
        """All string parameters from index onwards."""
        return [p.value for p in self.params[index:] if p.kind is ParamKind.STRING]


def parse_param(token: str) -> ParamValue:
    """Parse a single typed parameter such as int(4221) or string(/path)."""
    token = token.strip()

    for kind in ParamKind:
        prefix = f"{kind.value}("
        if token.startswith(prefix) and token.endswith(")"):
            body = token[len(prefix):-1]
            break
    else:
        raise ValidatorSpecError(
            f"invalid parameter format: {token}. expected bool(...), int(...), or string(...)"
        )

    if kind is ParamKind.BOOL:
        lowered = body.strip().lower()
        if lowered == "true":
            return ParamValue.of_bool(True)
        if lowered == "false":
            return ParamValue.of_bool(False)
        raise ValidatorSpecError(f"invalid boolean value: {body}")

    if kind is ParamKind.INT:
        digits = body.strip()
        if not _INT_PATTERN.fullmatch(digits):
            raise ValidatorSpecError(f"invalid integer value: {body}")
        value = int(digits)
        if not INT_MIN <= value <= INT_MAX:
            raise ValidatorSpecError(f"invalid integer value: {body}")
        return ParamValue.of_int(value)

    return ParamValue.of_string(body)


def split_params(text: str) -> List[str]:
    """Split a parameter list on commas at parenthesis depth 0."""
    parts = []
    current = []
    depth = 0
    for ch in text:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        elif ch == "," and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        current.append(ch)
    parts.append("".join(current))
    return [p for p in parts if p.strip()]


def parse_validator(text: str) -> ParsedValidator:
    """
    Parse a validator spec string.

    Raises:
        ValidatorSpecError: empty name, malformed parameter wrapper, or a
            bool/int body that does not parse.
    """
    text = text.strip()
    name, sep, params_text = text.partition(":")
    name = name.strip()

    if not name:
        raise ValidatorSpecError("validator name cannot be empty")

    params_text = params_text.strip() if sep else ""
    params = tuple(parse_param(p) for p in split_params(params_text)) if params_text else ()

    return ParsedValidator(name=name, params=params)
