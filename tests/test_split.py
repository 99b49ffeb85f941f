from decimal import Decimal

import pytest

from errors import SplitError, ValidationError
from logic import normalize_split_inputs, split
from models import CustomInput, EqualInput, PercentageInput, ShareStatus, SplitStrategy


def _finals(shares):
    return [s.final_share for s in shares]


def test_equal_split_distributes_remainder_in_input_order():
    shares = split(1000, SplitStrategy.EQUAL, [1, 2, 3])
    assert _finals(shares) == [334, 333, 333]
    assert [s.participant for s in shares] == [1, 2, 3]
    assert all(s.status is ShareStatus.PENDING for s in shares)


def test_equal_split_is_repeatable():
    assert _finals(split(1001, "equal", [7, 3, 5])) == _finals(split(1001, "equal", [7, 3, 5])) == [334, 334, 333]


@pytest.mark.parametrize("total", [1, 2, 7, 99, 100, 1000, 10001, 123457])
@pytest.mark.parametrize("n", [1, 2, 3, 4, 6, 7])
def test_equal_split_sums_exactly_and_stays_within_one_unit(total, n):
    finals = _finals(split(total, SplitStrategy.EQUAL, list(range(1, n + 1))))
    assert sum(finals) == total
    assert max(finals) - min(finals) <= 1


def test_percentage_split_thirds():
    shares = split(10000, SplitStrategy.PERCENTAGE,
                   [{"user": 1, "percentage": "33.33"}, {"user": 2, "percentage": "33.33"},
                    {"user": 3, "percentage": "33.34"}])
    assert _finals(shares) == [3333, 3333, 3334]
    assert sum(_finals(shares)) == 10000
    assert [s.percentage for s in shares] == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]


def test_percentage_split_leftover_goes_to_first_participants():
    shares = split(100, SplitStrategy.PERCENTAGE,
                   [PercentageInput(1, Decimal("33.33")), PercentageInput(2, Decimal("33.33")),
                    PercentageInput(3, Decimal("33.34"))])
    assert _finals(shares) == [34, 33, 33]


def test_percentage_split_uneven():
    shares = split(999, "percentage", [{"user": 1, "percentage": 60}, {"user": 2, "percentage": 40}])
    # 599.4 -> 599, 399.6 -> 399, leftover 1 to the first participant
    assert _finals(shares) == [600, 399]


@pytest.mark.parametrize("percentages", [
    ["33.33", "33.33", "33.33"],
    ["33.34", "33.34", "33.33"],
    ["50", "49"],
])
def test_percentage_split_must_total_exactly_100(percentages):
    with pytest.raises(SplitError, match="100"):
        split(10000, SplitStrategy.PERCENTAGE,
              [{"user": i, "percentage": p} for i, p in enumerate(percentages, start=1)])


@pytest.mark.parametrize("pct", ["0", "-1", "100.01"])
def test_percentage_out_of_range_rejected(pct):
    with pytest.raises(SplitError):
        split(1000, SplitStrategy.PERCENTAGE,
              [PercentageInput(1, Decimal(pct)), PercentageInput(2, 100 - Decimal(pct))])


@pytest.mark.parametrize("percentages", [
    ["33.334", "33.333", "33.333"],
    ["33.335", "33.335", "33.33"],
])
def test_percentage_sum_is_rounded_not_each_percentage(percentages):
    shares = split(10000, SplitStrategy.PERCENTAGE,
                   [{"user": i, "percentage": p} for i, p in enumerate(percentages, start=1)])
    assert _finals(shares) == [3334, 3333, 3333]
    assert [s.percentage for s in shares] == [Decimal(p) for p in percentages]


def test_percentage_sum_that_rounds_to_100_never_overallocates():
    shares = split(1000000, SplitStrategy.PERCENTAGE, [{"user": 1, "percentage": "50.004"},
                                                       {"user": 2, "percentage": "50"}])
    assert sum(_finals(shares)) == 1000000


PERCENTAGE_VECTORS = [
    ["100"],
    ["50", "50"],
    ["60", "40"],
    ["33.33", "33.33", "33.34"],
    ["12.5", "12.5", "75"],
    ["0.01", "99.99"],
    ["33.334", "33.333", "33.333"],
    ["14.29", "14.29", "14.28", "14.28", "14.28", "14.29", "14.29"],
]


@pytest.mark.parametrize("total", [1, 7, 99, 1000, 10001, 123457])
@pytest.mark.parametrize("percentages", PERCENTAGE_VECTORS)
def test_percentage_split_sums_exactly(total, percentages):
    shares = split(total, SplitStrategy.PERCENTAGE,
                   [{"user": i, "percentage": p} for i, p in enumerate(percentages, start=1)])
    assert sum(_finals(shares)) == total
    for s, p in zip(shares, percentages):
        assert 0 <= s.final_share - int(total * Decimal(p) // 100) <= 1


@pytest.mark.parametrize("amounts", [[1], [1, 1], [250, 750], [1, 2, 3, 4], [99999, 1], [333, 333, 334]])
def test_custom_split_sums_exactly(amounts):
    total = sum(amounts)
    shares = split(total, SplitStrategy.CUSTOM, [CustomInput(i, a) for i, a in enumerate(amounts, start=1)])
    assert _finals(shares) == amounts
    assert sum(_finals(shares)) == total
    with pytest.raises(SplitError):
        split(total + 1, SplitStrategy.CUSTOM, [CustomInput(i, a) for i, a in enumerate(amounts, start=1)])


def test_custom_split_uses_declared_amounts():
    shares = split(1000, SplitStrategy.CUSTOM, [{"user": 1, "amount": "2.50"}, {"user": 2, "amount": "7.50"}])
    assert _finals(shares) == [250, 750]
    assert [s.declared_amount for s in shares] == [250, 750]


def test_custom_split_must_match_total():
    with pytest.raises(SplitError, match="add up"):
        split(1000, SplitStrategy.CUSTOM, [CustomInput(1, 400), CustomInput(2, 500)])


def test_custom_split_rejects_non_positive_amounts():
    with pytest.raises(SplitError):
        split(1000, SplitStrategy.CUSTOM, [CustomInput(1, 1000), CustomInput(2, 0)])


@pytest.mark.parametrize("total", [0, -5])
def test_total_must_be_positive(total):
    with pytest.raises(SplitError):
        split(total, SplitStrategy.EQUAL, [1, 2])


def test_total_must_be_minor_units():
    with pytest.raises(SplitError):
        split(10.5, SplitStrategy.EQUAL, [1, 2])


def test_participants_required_and_unique():
    with pytest.raises(SplitError):
        split(100, SplitStrategy.EQUAL, [])
    with pytest.raises(SplitError, match="once"):
        split(100, SplitStrategy.EQUAL, [1, 2, 1])


def test_none_strategy_cannot_be_split():
    with pytest.raises(SplitError):
        split(100, SplitStrategy.NONE, [1])


def test_split_errors_are_validation_errors():
    with pytest.raises(ValidationError):
        split(100, SplitStrategy.CUSTOM, [CustomInput(1, 1)])


def test_normalize_accepts_bare_ids_and_mappings():
    assert normalize_split_inputs(SplitStrategy.EQUAL, [1, {"user": 2}, EqualInput(3)]) == \
        [EqualInput(1), EqualInput(2), EqualInput(3)]
    assert normalize_split_inputs("percentage", [{"user": 1, "percentage": 12.5}]) == \
        [PercentageInput(1, Decimal("12.5"))]


def test_normalize_rejects_incomplete_input():
    with pytest.raises(SplitError, match="percentage"):
        normalize_split_inputs(SplitStrategy.PERCENTAGE, [1])
    with pytest.raises(SplitError, match="amount"):
        normalize_split_inputs(SplitStrategy.CUSTOM, [{"user": 1}])
    with pytest.raises(SplitError):
        normalize_split_inputs(SplitStrategy.EQUAL, [CustomInput(1, 5)])
