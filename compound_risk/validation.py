"""
Validation layer for compound formulations
Rejects structurally invalid input before any hazard lookup is made
"""

from typing import List, Dict, Optional

from compound_risk.models import CompoundFormulation, CompoundIngredient
from compound_risk.exceptions import ValidationError
from compound_risk.types import ValidationSummaryDict
from compound_risk.constants import MAX_PERCENTAGE, PERCENTAGE_SUM_TOLERANCE


# ============================================================================
# Ingredient Validation
# ============================================================================


def validate_ingredients(
    ingredients: List[CompoundIngredient], max_ingredients: int
) -> List[ValidationError]:
    """
    Validate the ingredient list

    Rules:
    - at least one ingredient
    - no more than max_ingredients
    - names are non-blank and unique (case-insensitive)
    - quantities are non-negative
    """
    errors: List[ValidationError] = []

    if not ingredients:
        errors.append(
            ValidationError(
                code="no_ingredients",
                message="Compound must contain at least one ingredient",
                field="ingredients",
                suggestion="Add the active and base ingredients of the preparation",
            )
        )
        return errors

    if len(ingredients) > max_ingredients:
        errors.append(
            ValidationError(
                code="too_many_ingredients",
                message=(
                    f"Compound has {len(ingredients)} ingredients, "
                    f"maximum is {max_ingredients}"
                ),
                field="ingredients",
                context={"count": len(ingredients), "max": max_ingredients},
            )
        )

    seen: Dict[str, int] = {}
    for index, ingredient in enumerate(ingredients):
        name = ingredient.name.strip()

        if not name:
            errors.append(
                ValidationError(
                    code="missing_ingredient_name",
                    message=f"Ingredient at position {index + 1} has no name",
                    field=f"ingredients[{index}].name",
                    suggestion="Enter the ingredient name as listed on the label",
                )
            )
            continue

        key = name.lower()
        if key in seen:
            errors.append(
                ValidationError(
                    code="duplicate_ingredient",
                    message=f"Ingredient '{name}' is listed more than once",
                    ingredient=name,
                    field=f"ingredients[{index}].name",
                    suggestion="Combine the quantities into a single line",
                    context={"first_position": seen[key] + 1},
                )
            )
        else:
            seen[key] = index

        if ingredient.quantity < 0:
            errors.append(
                ValidationError(
                    code="negative_quantity",
                    message=f"Quantity of '{name}' cannot be negative, got {ingredient.quantity}",
                    ingredient=name,
                    field=f"ingredients[{index}].quantity",
                )
            )

    return errors


def validate_percentages(ingredients: List[CompoundIngredient]) -> List[ValidationError]:
    """
    Validate ingredient concentrations

    Rules:
    - each percentage is within 0-100
    - the stated percentages sum to at most 100 (small rounding slack)
    """
    errors: List[ValidationError] = []
    total = 0.0

    for index, ingredient in enumerate(ingredients):
        if ingredient.percentage is None:
            continue
        if ingredient.percentage < 0 or ingredient.percentage > MAX_PERCENTAGE:
            errors.append(
                ValidationError(
                    code="invalid_percentage",
                    message=(
                        f"Percentage of '{ingredient.name}' must be between 0 and 100, "
                        f"got {ingredient.percentage}"
                    ),
                    ingredient=ingredient.name,
                    field=f"ingredients[{index}].percentage",
                )
            )
            continue
        total += ingredient.percentage

    if total > MAX_PERCENTAGE + PERCENTAGE_SUM_TOLERANCE:
        errors.append(
            ValidationError(
                code="percentage_sum_exceeded",
                message=f"Ingredient percentages sum to {total:g}%, which exceeds 100%",
                field="ingredients",
                suggestion="Check concentrations; the base usually makes up the remainder",
                context={"total_percentage": total},
            )
        )

    return errors


# ============================================================================
# Formulation Validation
# ============================================================================


def validate_formulation(
    compound: CompoundFormulation, max_ingredients: int = 50
) -> List[ValidationError]:
    """
    Run all structural checks on a formulation

    Args:
        compound: Formulation to check
        max_ingredients: Upper bound on ingredient lines

    Returns:
        List of validation errors (empty when valid)
    """
    errors: List[ValidationError] = []

    if compound.total_quantity <= 0:
        errors.append(
            ValidationError(
                code="invalid_total_quantity",
                message=f"Total quantity must be greater than 0, got {compound.total_quantity}",
                field="total_quantity",
                suggestion="Set total_quantity to the batch size",
            )
        )

    ingredient_errors = validate_ingredients(compound.ingredients, max_ingredients)
    errors.extend(ingredient_errors)

    # Percentages are meaningless without a usable ingredient list
    if not any(e.code == "no_ingredients" for e in ingredient_errors):
        errors.extend(validate_percentages(compound.ingredients))

    return errors


# ============================================================================
# Utility Functions
# ============================================================================


def get_validation_summary(errors: List[ValidationError]) -> ValidationSummaryDict:
    """
    Get a summary of validation errors

    Returns:
        Dictionary with error counts by code and by ingredient
    """
    errors_by_code: Dict[str, int] = {}
    errors_by_ingredient: Dict[str, int] = {}

    for error in errors:
        errors_by_code[error.code] = errors_by_code.get(error.code, 0) + 1
        ingredient: Optional[str] = error.ingredient or "formulation"
        errors_by_ingredient[ingredient] = errors_by_ingredient.get(ingredient, 0) + 1

    return {
        "valid": not errors,
        "error_count": len(errors),
        "errors_by_code": errors_by_code,
        "errors_by_ingredient": errors_by_ingredient,
        "errors": [error.model_dump() for error in errors],
    }
