"""Metabolic rate and thermic-effect-of-food calculations."""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime

from nutrition_log.domain.profile import UserProfile
from nutrition_log.domain.records import FoodEntry, TEFAnalysis

ACTIVITY_MULTIPLIERS = {
    "sedentary": 1.2,
    "light": 1.375,
    "moderate": 1.55,
    "active": 1.725,
    "very_active": 1.9,
}

# Share of each macro's calories spent on digestion.
_TEF_RATES = {"protein": 0.25, "carbohydrates": 0.075, "fat": 0.015}
_CALORIES_PER_GRAM = {"protein": 4.0, "carbohydrates": 4.0, "fat": 9.0}

_ENHANCEMENT_KEYWORDS = {
    "caffeine": ("coffee", "espresso", "latte", "americano", "caffeine"),
    "capsaicin": ("chili", "chilli", "pepper", "jalapeno", "spicy"),
    "green tea catechins": ("green tea", "matcha"),
    "ginger": ("ginger",),
    "acetic acid": ("vinegar",),
}


@dataclass(frozen=True)
class MetabolicRates:
    """Basal and total daily energy expenditure in kcal."""

    bmr: float
    tdee: float


def calculate_bmr(profile: UserProfile, weight: float | None = None) -> float | None:
    """Return BMR for the profile, optionally overriding body weight."""
    body_weight = weight if weight is not None else profile.weight
    if body_weight <= 0 or profile.height <= 0 or profile.age <= 0:
        return None
    is_male = profile.gender.lower() == "male"
    if profile.bmr_formula == "harris-benedict":
        if is_male:
            return (
                88.362
                + 13.397 * body_weight
                + 4.799 * profile.height
                - 5.677 * profile.age
            )
        return (
            447.593
            + 9.247 * body_weight
            + 3.098 * profile.height
            - 4.330 * profile.age
        )
    base = 10 * body_weight + 6.25 * profile.height - 5 * profile.age
    return base + 5 if is_male else base - 161


def calculate_metabolic_rates(
    profile: UserProfile,
    *,
    weight: float | None = None,
    activity_level: str | None = None,
    additional_tef: float | None = None,
) -> MetabolicRates | None:
    """Return BMR and TDEE, or None when the profile is incomplete."""
    bmr = calculate_bmr(profile, weight)
    if bmr is None:
        return None
    level = activity_level or profile.activity_level
    multiplier = ACTIVITY_MULTIPLIERS.get(level, ACTIVITY_MULTIPLIERS["moderate"])
    tdee = bmr * multiplier + (additional_tef or 0.0)
    return MetabolicRates(bmr=round(bmr), tdee=round(tdee))


def detect_enhancement_factors(entries: Iterable[FoodEntry]) -> list[str]:
    """Return TEF-raising factors recognised from food names."""
    names = " ".join(entry.food_name.lower() for entry in entries)
    return [
        factor
        for factor, keywords in _ENHANCEMENT_KEYWORDS.items()
        if any(keyword in names for keyword in keywords)
    ]


def compute_tef_analysis(
    entries: list[FoodEntry], enhancement_multiplier: float = 1.0
) -> TEFAnalysis:
    """Compute base and enhanced TEF from consumed macros."""
    base_tef = 0.0
    total_calories = 0.0
    for entry in entries:
        consumed = entry.total_nutritional_info_consumed
        total_calories += consumed.calories
        for macro, rate in _TEF_RATES.items():
            grams = float(getattr(consumed, macro))
            base_tef += grams * _CALORIES_PER_GRAM[macro] * rate
    percentage = (base_tef / total_calories * 100) if total_calories > 0 else 0.0
    multiplier = enhancement_multiplier if enhancement_multiplier > 0 else 1.0
    return TEFAnalysis(
        base_tef=round(base_tef, 1),
        base_tef_percentage=round(percentage, 1),
        enhancement_multiplier=multiplier,
        enhanced_tef=round(base_tef * multiplier, 1),
        enhancement_factors=detect_enhancement_factors(entries),
        analysis_timestamp=datetime.now(tz=UTC).isoformat(),
    )
