import pytest

from budgetvote.services.budget_tree import Ballot, BudgetTree
from budgetvote.services.errors import EmptyVoteSet
from budgetvote.services.median_aggregator import aggregate, calculate_median


def _tree(income=None, categories=None):
    return BudgetTree.from_definitions(
        categories
        or [
            {"id": "A", "name": "Schools", "defaultAmount": 200, "minAmount": 100},
            {"id": "B", "name": "Parks", "defaultAmount": 300, "minAmount": 0},
        ],
        income or [{"id": "tax", "name": "Tax", "amount": 500}],
    )


def _ballot(expenses, income=None):
    return Ballot(
        allocations=[
            {"categoryId": key, "amount": amount, "subAllocations": subs}
            for key, (amount, subs) in expenses.items()
        ],
        income_allocations=income or [{"categoryId": "tax", "amount": 500}],
    )


def test_median_of_even_and_odd_counts():
    assert calculate_median([10, 20, 30, 40]) == 25
    assert calculate_median([10, 20, 30]) == 20
    assert calculate_median([40, 10, 30, 20]) == 25
    assert calculate_median([]) == 0


def test_balanced_budget_scales_medians_to_income():
    votes = [
        _ballot({"A": (150, []), "B": (250, [])}),
        _ballot({"A": (300, []), "B": (100, [])}),
    ]

    result = aggregate(votes, _tree())

    assert result["totalMedianExpenses"] == 400
    assert result["totalMedianIncome"] == 500
    assert result["balancedExpenses"] == 500
    by_id = {item["categoryId"]: item for item in result["medianAllocations"]}
    assert by_id["A"]["percentageOfTotal"] == pytest.approx(56.25)
    assert by_id["A"]["medianAmount"] == pytest.approx(281.25)
    assert by_id["B"]["medianAmount"] == pytest.approx(218.75)
    assert result["voterCount"] == 2


def test_absent_allocation_counts_as_zero():
    votes = [
        _ballot({"A": (300, [])}),
        _ballot({"A": (100, []), "B": (200, [])}),
        _ballot({"A": (200, []), "B": (400, [])}),
    ]

    result = aggregate(votes, _tree())

    # B amounts are [0, 200, 400]
    assert result["totalMedianExpenses"] == 200 + 200


def test_subcategory_share_uses_unbalanced_category_median():
    categories = [
        {
            "id": "A",
            "name": "Schools",
            "defaultAmount": 200,
            "subcategories": [
                {"id": "A1", "name": "Preschool"},
                {"id": "A2", "name": "Primary"},
            ],
        }
    ]
    income = [{"categoryId": "tax", "amount": 1000}]
    votes = [
        _ballot(
            {"A": (200, [{"subcategoryId": "A1", "amount": 50}, {"subcategoryId": "A2", "amount": 150}])},
            income,
        ),
        _ballot({"A": (200, [{"subcategoryId": "A1", "amount": 150}])}, income),
    ]

    result = aggregate(
        votes,
        _tree(income=[{"id": "tax", "name": "Tax", "amount": 1000}], categories=categories),
    )

    category = result["medianAllocations"][0]
    subs = {item["subcategoryId"]: item for item in category["subAllocations"]}
    assert subs["A1"]["medianAmount"] == 100
    assert subs["A1"]["percentageOfCategory"] == pytest.approx(50.0)
    assert subs["A2"]["medianAmount"] == 75
    assert subs["A2"]["percentageOfCategory"] == pytest.approx(37.5)
    # Balancing scales the category only
    assert category["medianAmount"] == pytest.approx(1000.0)


def test_zero_category_median_gives_zero_shares():
    categories = [
        {"id": "A", "name": "Schools", "defaultAmount": 0, "subcategories": [{"id": "A1", "name": "x"}]}
    ]
    votes = [_ballot({"A": (0, [])})]

    result = aggregate(votes, _tree(categories=categories))

    category = result["medianAllocations"][0]
    assert category["percentageOfTotal"] == 0
    assert category["medianAmount"] == 0
    assert category["subAllocations"][0]["percentageOfCategory"] == 0


def test_tax_rate_median_ignores_missing_rates():
    income = [{"id": "tax", "name": "Tax", "amount": 500, "isTaxRate": True}]
    votes = [
        _ballot({"A": (100, [])}, [{"categoryId": "tax", "amount": 400, "taxRatePercent": 19.0}]),
        _ballot({"A": (100, [])}, [{"categoryId": "tax", "amount": 600, "taxRatePercent": 21.0}]),
        _ballot({"A": (100, [])}, [{"categoryId": "tax", "amount": 500}]),
    ]

    result = aggregate(votes, _tree(income=income))

    tax = result["medianIncomeAllocations"][0]
    assert tax["medianAmount"] == 500
    assert tax["medianTaxRatePercent"] == pytest.approx(20.0)


def test_tax_rate_median_is_zero_without_samples():
    income = [{"id": "tax", "name": "Tax", "amount": 500, "isTaxRate": True}]
    votes = [_ballot({"A": (100, [])}, [{"categoryId": "tax", "amount": 400}])]

    result = aggregate(votes, _tree(income=income))

    assert result["medianIncomeAllocations"][0]["medianTaxRatePercent"] == 0


def test_non_tax_income_has_no_rate():
    result = aggregate([_ballot({"A": (100, [])})], _tree())
    assert result["medianIncomeAllocations"][0]["medianTaxRatePercent"] is None


def test_empty_vote_set_is_rejected():
    with pytest.raises(EmptyVoteSet) as excinfo:
        aggregate([], _tree(), session_id="vallentuna-2025")
    assert excinfo.value.code == "EMPTY_VOTE_SET"
    assert excinfo.value.session_id == "vallentuna-2025"


@pytest.mark.parametrize(
    "amounts",
    [
        [(100, 900, 1000)],
        [(120, 30, 77), (999, 1, 250), (5, 5, 5)],
        [(0, 0, 0), (0, 0, 10)],
        [(333, 333, 1000), (10, 20, 30), (70, 80, 90), (1, 2, 3)],
    ],
)
def test_balanced_expenses_always_equal_median_income(amounts):
    votes = [
        _ballot({"A": (a, []), "B": (b, [])}, [{"categoryId": "tax", "amount": income}])
        for a, b, income in amounts
    ]

    result = aggregate(votes, _tree())

    assert result["balancedExpenses"] == result["totalMedianIncome"]
    if result["totalMedianExpenses"] > 0:
        total = sum(item["medianAmount"] for item in result["medianAllocations"])
        assert total == pytest.approx(result["totalMedianIncome"])


def test_aggregation_is_deterministic():
    votes = [
        _ballot({"A": (130, []), "B": (275, [])}),
        _ballot({"A": (410, []), "B": (90, [])}),
        _ballot({"A": (220, []), "B": (180, [])}),
    ]

    first = aggregate(votes, _tree())
    second = aggregate(list(votes), _tree())

    assert first == second
