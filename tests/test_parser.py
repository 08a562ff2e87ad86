"""Tests for the validator spec parser."""

import pytest

from labcheck.errors import ValidatorSpecError
from labcheck.validators import ParamKind, ParamValue, parse_validator
from labcheck.validators.parser import parse_param, split_params


class TestParseValidator:
    """Test whole-spec parsing."""

    def test_name_only(self):
        """A spec without a colon has no parameters."""
        parsed = parse_validator("can_compile")
        assert parsed.name == "can_compile"
        assert parsed.params == ()

    def test_typed_params_in_order(self):
        """Parameters keep source order and type."""
        parsed = parse_validator("http_get:string(/echo/hi),int(200),string(hi)")
        assert parsed.name == "http_get"
        assert parsed.params == (
            ParamValue.of_string("/echo/hi"),
            ParamValue.of_int(200),
            ParamValue.of_string("hi"),
        )

    def test_surrounding_whitespace(self):
        """Whitespace around the name and parameters is ignored."""
        parsed = parse_validator("  tcp_listening :  int( 4221 ) ")
        assert parsed.name == "tcp_listening"
        assert parsed.param_as_int(0) == 4221

    def test_string_body_keeps_commas_and_parens(self):
        """Commas inside parentheses do not split parameters."""
        parsed = parse_validator("x:string(a, b (c)),int(1)")
        assert len(parsed.params) == 2
        assert parsed.param_as_string(0) == "a, b (c)"

    def test_docker_expectation_string(self):
        """A colon inside a string body is part of the body."""
        parsed = parse_validator(
            "docker:string(go1.22-race),string(fail_if:stderr contains DATA RACE),int(120)"
        )
        assert parsed.name == "docker"
        assert parsed.param_as_string(1) == "fail_if:stderr contains DATA RACE"
        assert parsed.param_as_int(2) == 120

    def test_empty_segments_skipped(self):
        """Trailing or doubled commas produce no parameter."""
        parsed = parse_validator("x:int(1),,int(2),")
        assert [p.value for p in parsed.params] == [1, 2]

    def test_empty_name_rejected(self):
        """An empty name is an error."""
        with pytest.raises(ValidatorSpecError, match="validator name cannot be empty"):
            parse_validator(":int(1)")

    def test_malformed_param_rejected(self):
        """An unknown wrapper names the accepted forms."""
        with pytest.raises(ValidatorSpecError, match="invalid parameter format: float"):
            parse_validator("x:float(1.5)")

    def test_str_round_trip(self):
        """Parameters render back to their bodies."""
        parsed = parse_validator("x:bool(TRUE),int(-3),string(hi)")
        assert [str(p) for p in parsed.params] == ["true", "-3", "hi"]


class TestParseParam:
    """Test single-parameter parsing."""

    @pytest.mark.parametrize("body,expected", [("true", True), ("True", True), ("FALSE", False)])
    def test_bool_case_insensitive(self, body, expected):
        """Booleans accept any casing."""
        assert parse_param(f"bool({body})") == ParamValue.of_bool(expected)

    def test_negative_int(self):
        """Integers may be negative."""
        assert parse_param("int(-7)") == ParamValue.of_int(-7)

    def test_empty_string(self):
        """An empty string body is valid."""
        assert parse_param("string()") == ParamValue.of_string("")

    def test_string_not_trimmed(self):
        """String bodies are kept verbatim."""
        assert parse_param("string( padded )").value == " padded "

    def test_invalid_bool(self):
        """Anything but true/false is rejected."""
        with pytest.raises(ValidatorSpecError, match="invalid boolean value: yes"):
            parse_param("bool(yes)")

    def test_invalid_int(self):
        """Non-numeric int bodies are rejected."""
        with pytest.raises(ValidatorSpecError, match="invalid integer value: abc"):
            parse_param("int(abc)")

    @pytest.mark.parametrize(
        "body", ["1_000", "+5", "\u0663", "1.5", "9223372036854775808", "-9223372036854775809"]
    )
    def test_int_must_be_plain_64_bit(self, body):
        """Only ASCII digits with an optional minus sign, within 64 bits."""
        with pytest.raises(ValidatorSpecError, match="invalid integer value"):
            parse_param(f"int({body})")

    def test_int_64_bit_bounds(self):
        """The signed 64-bit extremes are accepted."""
        assert parse_param("int(9223372036854775807)").value == 2 ** 63 - 1
        assert parse_param("int(-9223372036854775808)").value == -(2 ** 63)
        assert parse_param("int( 42 )").value == 42

    def test_missing_close_paren(self):
        """The wrapper must be closed."""
        with pytest.raises(ValidatorSpecError, match="invalid parameter format"):
            parse_param("int(5")


class TestSplitParams:
    """Test depth-aware splitting."""

    def test_nested_depth(self):
        """Only depth-0 commas split."""
        assert split_params("string(a,(b,c)),int(1)") == ["string(a,(b,c))", "int(1)"]

    def test_blank(self):
        """Blank input yields nothing."""
        assert split_params("  ") == []


class TestParsedValidatorAccessors:
    """Test typed accessors."""

    @pytest.fixture
    def parsed(self):
        return parse_validator("x:int(5),string(s),bool(false)")

    def test_missing_index(self, parsed):
        """Out-of-range index reports the index."""
        with pytest.raises(ValidatorSpecError, match="missing parameter at index 3"):
            parsed.param_as_int(3)

    def test_wrong_type(self, parsed):
        """A type mismatch names the expected type."""
        with pytest.raises(ValidatorSpecError, match="parameter 0 is not a string"):
            parsed.param_as_string(0)
        with pytest.raises(ValidatorSpecError, match="parameter 1 is not an integer"):
            parsed.param_as_int(1)
        with pytest.raises(ValidatorSpecError, match="parameter 0 is not a boolean"):
            parsed.param_as_bool(0)

    def test_port_range(self):
        """Ports outside 0-65535 are rejected with their index."""
        assert parse_validator("x:int(65535)").param_as_port(0) == 65535
        with pytest.raises(ValidatorSpecError, match="parameter 1 is not a valid port: 70000"):
            parse_validator("x:int(1),int(70000)").param_as_port(1)
        with pytest.raises(ValidatorSpecError, match="parameter 0 is not a valid port: -1"):
            parse_validator("x:int(-1)").param_as_port(0)

    def test_counts_not_negative(self):
        """Counts and durations must not be negative, required or optional."""
        parsed = parse_validator("x:int(0),int(-3)")
        assert parsed.param_as_count(0) == 0
        assert parsed.optional_count(5, 7) == 7
        assert parsed.optional_count(5) is None
        with pytest.raises(ValidatorSpecError, match="parameter 1 must not be negative: -3"):
            parsed.param_as_count(1)
        with pytest.raises(ValidatorSpecError, match="parameter 1 must not be negative: -3"):
            parsed.optional_count(1, 5)

    def test_optional_defaults(self, parsed):
        """Optional accessors fall back on absence or type mismatch."""
        assert parsed.optional_int(0, 9) == 5
        assert parsed.optional_int(1, 9) == 9
        assert parsed.optional_string(7, "d") == "d"
        assert parsed.optional_bool(2, True) is False

    def test_strings_from(self):
        """Trailing string parameters are collected in order."""
        parsed = parse_validator("x:string(a),int(1),string(b),string(c)")
        assert parsed.strings_from(1) == ["b", "c"]

    def test_param_kind(self, parsed):
        """Kinds are exposed on each parameter."""
        assert [p.kind for p in parsed.params] == [ParamKind.INT, ParamKind.STRING, ParamKind.BOOL]
