import pytest

from snapfest.utils.money import percentage_of, remaining, round_amount, tax_on, to_amount


@pytest.mark.parametrize("value, expected", [
    (199.5, 200),
    (199.49, 199),
    (0.5, 1),
    (2.5, 3),
    ("1234.5", 1235),
    (10, 10),
])
def test_round_amount_is_half_up(value, expected):
    assert round_amount(value) == expected


def test_percentage_of_rounds_once():
    # 20% of 999 = 199.8
    assert percentage_of(999, 20) == 200
    # 20% of 1001 = 200.2
    assert percentage_of(1001, 20) == 200
    # 25% of 1002 = 250.5
    assert percentage_of(1002, 25) == 251
    assert percentage_of(1000, 100) == 1000


def test_tax_on_eighteen_percent():
    assert tax_on(3000, 0.18) == 540
    # 18% of 999 = 179.82
    assert tax_on(999, 0.18) == 180


def test_remaining_is_never_negative():
    assert remaining(1000, 200) == 800
    assert remaining(1000, 1000) == 0
    assert remaining(1000, 1200) == 0


def test_partial_then_remaining_has_no_drift():
    for total in (999, 1001, 1234, 5, 1):
        for pct in (20, 33, 50, 99, 100):
            partial = percentage_of(total, pct)
            assert partial + remaining(total, partial) == total


def test_to_amount_accepts_numeric_strings_and_floats():
    assert to_amount("1500") == 1500
    assert to_amount(1499.6) == 1500


@pytest.mark.parametrize("bad", [True, "abc", -5, None])
def test_to_amount_rejects_bad_values(bad):
    with pytest.raises((ValueError, TypeError)):
        to_amount(bad)
