import pytest

from values import (
    INT64_MAX,
    INT64_MIN,
    TYPE_FLT,
    TYPE_INT,
    TYPE_STR,
    ParseValueError,
    UnsupportedOperation,
    Value,
    parse_line_number,
    parse_value,
    to_debug,
    to_text,
)


def INT(n):
    return Value(TYPE_INT, n)


def FLT(x):
    return Value(TYPE_FLT, x)


def STR(s):
    return Value(TYPE_STR, s)


def test_text_plus_anything_concatenates_self_first():
    assert STR("Hello").add(FLT(3.14)) == STR("Hello3.14")
    assert STR("Hello").add(INT(5)) == STR("Hello5")
    assert STR("Hello").add(STR("World")) == STR("HelloWorld")


def test_number_plus_text_yields_text():
    assert FLT(3.14).add(STR("World")) == STR("3.14World")
    assert INT(5).add(STR("World")) == STR("5World")


def test_numeric_addition_widens_integers():
    mixed = FLT(3.14).add(INT(5))
    assert mixed.type == TYPE_FLT
    assert mixed.value == pytest.approx(8.14)
    flipped = INT(5).add(FLT(3.14))
    assert flipped.type == TYPE_FLT
    assert flipped.value == pytest.approx(8.14)
    assert FLT(3.14).add(FLT(3.14)) == FLT(6.28)
    assert INT(5).add(INT(5)) == INT(10)


def test_add_is_total_over_all_kind_pairs():
    samples = [INT(2), FLT(0.5), STR("s")]
    for left in samples:
        for right in samples:
            assert left.add(right).type in (TYPE_INT, TYPE_FLT, TYPE_STR)


def test_integer_addition_wraps_at_64_bits():
    assert INT(INT64_MAX).add(INT(1)) == INT(INT64_MIN)
    assert INT(INT64_MIN).add(INT(-1)) == INT(INT64_MAX)


def test_mult_numeric_rules():
    assert INT(3).mult(INT(4)) == INT(12)
    assert FLT(2.0).mult(INT(3)) == FLT(6.0)
    assert INT(3).mult(FLT(2.0)) == FLT(6.0)
    assert FLT(1.5).mult(FLT(2.0)) == FLT(3.0)


def test_mult_wraps_at_64_bits():
    assert INT(INT64_MAX).mult(INT(2)) == INT(-2)


@pytest.mark.parametrize("left, right", [
    (STR("a"), INT(1)),
    (INT(1), STR("a")),
    (STR("a"), FLT(1.0)),
    (FLT(1.0), STR("a")),
    (STR("a"), STR("b")),
])
def test_mult_rejects_text_on_either_side(left, right):
    with pytest.raises(UnsupportedOperation):
        left.mult(right)


def test_increment_only_accepts_integers():
    assert INT(0).increment(1) == INT(1)
    assert INT(0).increment(-1) == INT(-1)
    assert INT(INT64_MAX).increment(1) == INT(INT64_MIN)
    with pytest.raises(UnsupportedOperation):
        FLT(0.0).increment(1)
    with pytest.raises(UnsupportedOperation):
        STR("0").increment(1)


def test_equality_is_structural_and_kind_sensitive():
    assert INT(0) == INT(0)
    assert INT(0) != FLT(0.0)
    assert STR("0") != INT(0)


def test_unknown_kind_is_rejected():
    with pytest.raises(ValueError):
        Value("BOOL", True)


def test_parse_literals():
    assert parse_value('"hello"') == STR("hello")
    assert parse_value('""') == STR("")
    assert parse_value("3.5") == FLT(3.5)
    assert parse_value(".5") == FLT(0.5)
    assert parse_value("5.") == FLT(5.0)
    assert parse_value("-2.5e2") == FLT(-250.0)
    assert parse_value("42") == INT(42)
    assert parse_value("-7") == INT(-7)
    assert parse_value("+7") == INT(7)
    assert parse_value(str(INT64_MIN)) == INT(INT64_MIN)


@pytest.mark.parametrize("token", [
    "abc",
    '"abc',
    'abc"',
    '"',
    "1.2.3",
    "1e5",
    "1_000",
    "12abc",
    "9223372036854775808",
])
def test_parse_rejects_invalid_literals(token):
    with pytest.raises(ParseValueError):
        parse_value(token)


def test_parse_line_number():
    assert parse_line_number("1") == 1
    assert parse_line_number("+12") == 12
    for token in ("0", "-1", "1.5", "x", ""):
        with pytest.raises(ParseValueError):
            parse_line_number(token)


def test_text_and_debug_forms():
    assert to_text(STR("hi")) == "hi"
    assert to_debug(STR("hi")) == '"hi"'
    assert to_debug(INT(-3)) == "-3"
    assert to_debug(FLT(6.0)) == "6.0"


def test_floats_concatenate_in_positional_form():
    assert to_text(FLT(1e16)) == "10000000000000000"
    assert to_text(FLT(6.0)) == "6"
    assert to_text(FLT(1e-7)) == "0.0000001"
    assert to_text(FLT(float("inf"))) == "inf"
    assert to_text(FLT(float("nan"))) == "NaN"
    assert STR("x").add(FLT(6.0)) == STR("x6")
    assert FLT(2.5).add(STR("!")) == STR("2.5!")
    assert to_debug(FLT(1e16)) == "1e+16"
