from decimal import Decimal
import pytest
from aggregator.services.validation import MAX_AMOUNT, to_amount, validate_amount, validate_key, validate_offer_id


@pytest.mark.parametrize("key", ["a" * 24, "0123456789abcdefABCDEF01", "Z" * 23 + "9"])
def test_valid_keys(key):
    assert validate_key(key) is True


@pytest.mark.parametrize(
    "key",
    [None, "", "a" * 23, "a" * 25, "abc-def-ghi-jkl-mno-pqrs", "é" * 24, " " + "a" * 23, 123],
)
def test_invalid_keys(key):
    assert validate_key(key) is False


def test_key_with_trailing_newline_is_rejected():
    # fullmatch must not accept "$" style trailing newline
    assert validate_key("a" * 24 + "\n") is False


@pytest.mark.parametrize("offer_id", ["1", "offer_1", "OFF-42", "x" * 50])
def test_valid_offer_ids(offer_id):
    assert validate_offer_id(offer_id) is True


@pytest.mark.parametrize("offer_id", [None, "", "x" * 51, "offer 1", "offer/1", "offer.1"])
def test_invalid_offer_ids(offer_id):
    assert validate_offer_id(offer_id) is False


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("5", Decimal("5.00")),
        ("5.5", Decimal("5.50")),
        (" 12.34 ", Decimal("12.34")),
        ("0.005", Decimal("0.01")),
        ("1e2", Decimal("100.00")),
        (str(MAX_AMOUNT), MAX_AMOUNT),
    ],
)
def test_valid_amounts(raw, expected):
    amount, ok = validate_amount(raw)
    assert ok is True
    assert amount == expected


@pytest.mark.parametrize(
    "raw",
    [None, "", "   ", "abc", "0", "-1", "0.004", "NaN", "Infinity", "100000000.00", "1e30", "-1e30", "1" * 40, True],
)
def test_invalid_amounts(raw):
    amount, ok = validate_amount(raw)
    assert ok is False
    assert amount is None


def test_to_amount_normalizes_to_cents():
    assert to_amount(None) == Decimal("0.00")
    assert to_amount(3) == Decimal("3.00")
    assert to_amount(Decimal("1.005")) == Decimal("1.01")
    assert to_amount(2.5) == Decimal("2.50")


def test_half_cent_rounds_up_before_any_comparison():
    assert validate_amount("9.995") == (Decimal("10.00"), True)
    assert validate_amount("0.005") == (Decimal("0.01"), True)
    assert validate_amount("0.0049") == (None, False)
