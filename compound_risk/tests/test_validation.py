"""
Tests for validation module
"""

from compound_risk.models import CompoundFormulation, CompoundIngredient
from compound_risk.validation import (
    get_validation_summary,
    validate_formulation,
    validate_ingredients,
    validate_percentages,
)


def make_compound(ingredients, total_quantity=100.0, dosage_form="cream"):
    return CompoundFormulation(
        name="Test compound",
        dosage_form=dosage_form,
        total_quantity=total_quantity,
        ingredients=ingredients,
    )


def test_validate_formulation_valid():
    """Test a valid formulation"""
    compound = make_compound(
        [
            CompoundIngredient(name="Hydrocortisone", quantity=1.0, unit="g", percentage=1.0),
            CompoundIngredient(name="Cold cream base", quantity=99.0, unit="g", percentage=99.0),
        ]
    )
    errors = validate_formulation(compound)
    assert len(errors) == 0


def test_validate_formulation_no_ingredients():
    """Test formulation without ingredients"""
    errors = validate_formulation(make_compound([]))
    assert [e.code for e in errors] == ["no_ingredients"]


def test_validate_formulation_invalid_total_quantity():
    """Test zero and negative batch sizes"""
    ingredients = [CompoundIngredient(name="Aspirin", quantity=1.0)]

    for total in (0.0, -5.0):
        errors = validate_formulation(make_compound(ingredients, total_quantity=total))
        assert any(e.code == "invalid_total_quantity" for e in errors)


def test_validate_ingredients_too_many():
    """Test the ingredient count limit"""
    ingredients = [CompoundIngredient(name=f"Ingredient {i}", quantity=1.0) for i in range(4)]
    errors = validate_ingredients(ingredients, max_ingredients=3)
    assert len(errors) == 1
    assert errors[0].code == "too_many_ingredients"
    assert errors[0].context == {"count": 4, "max": 3}


def test_validate_ingredients_missing_name():
    """Test blank ingredient names"""
    errors = validate_ingredients(
        [CompoundIngredient(name="   ", quantity=1.0)], max_ingredients=50
    )
    assert len(errors) == 1
    assert errors[0].code == "missing_ingredient_name"
    assert errors[0].field == "ingredients[0].name"


def test_validate_ingredients_duplicate_case_insensitive():
    """Test duplicate names differing only in case"""
    errors = validate_ingredients(
        [
            CompoundIngredient(name="Tretinoin", quantity=1.0),
            CompoundIngredient(name="tretinoin ", quantity=2.0),
        ],
        max_ingredients=50,
    )
    assert len(errors) == 1
    assert errors[0].code == "duplicate_ingredient"
    assert errors[0].ingredient == "tretinoin"
    assert errors[0].context == {"first_position": 1}


def test_validate_ingredients_negative_quantity():
    """Test negative quantities"""
    errors = validate_ingredients(
        [CompoundIngredient(name="Aspirin", quantity=-1.0)], max_ingredients=50
    )
    assert len(errors) == 1
    assert errors[0].code == "negative_quantity"


def test_validate_percentages_out_of_range():
    """Test percentages outside 0-100"""
    errors = validate_percentages(
        [
            CompoundIngredient(name="A", percentage=-1.0),
            CompoundIngredient(name="B", percentage=150.0),
        ]
    )
    assert [e.code for e in errors] == ["invalid_percentage", "invalid_percentage"]


def test_validate_percentages_sum_exceeded():
    """Test that stated percentages may not exceed 100 in total"""
    errors = validate_percentages(
        [
            CompoundIngredient(name="A", percentage=60.0),
            CompoundIngredient(name="B", percentage=50.0),
        ]
    )
    assert len(errors) == 1
    assert errors[0].code == "percentage_sum_exceeded"
    assert errors[0].context["total_percentage"] == 110.0


def test_validate_percentages_rounding_slack():
    """Test that rounding just above 100 is tolerated"""
    errors = validate_percentages(
        [
            CompoundIngredient(name="A", percentage=33.334),
            CompoundIngredient(name="B", percentage=33.333),
            CompoundIngredient(name="C", percentage=33.334),
        ]
    )
    assert len(errors) == 0


def test_validate_percentages_ignores_missing():
    """Test that ingredients without a percentage are skipped"""
    errors = validate_percentages([CompoundIngredient(name="A"), CompoundIngredient(name="B")])
    assert len(errors) == 0


def test_get_validation_summary():
    """Test validation error summary"""
    compound = make_compound(
        [
            CompoundIngredient(name="Aspirin", quantity=-1.0),
            CompoundIngredient(name="aspirin", quantity=1.0),
        ],
        total_quantity=0.0,
    )
    errors = validate_formulation(compound)
    summary = get_validation_summary(errors)

    assert summary["valid"] is False
    assert summary["error_count"] == 3
    assert summary["errors_by_code"] == {
        "invalid_total_quantity": 1,
        "negative_quantity": 1,
        "duplicate_ingredient": 1,
    }
    assert summary["errors_by_ingredient"] == {"formulation": 1, "Aspirin": 1, "aspirin": 1}
    assert len(summary["errors"]) == 3


def test_get_validation_summary_empty():
    """Test summary of a valid formulation"""
    summary = get_validation_summary([])
    assert summary["valid"] is True
    assert summary["error_count"] == 0
