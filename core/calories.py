"""Daily calorie goal estimate used to seed new profiles."""

import logging
import math
from typing import Optional

import config

logger = logging.getLogger(__name__)


def calculate_bmr(weight: float, height: float, age: int, gender: str) -> float:
    """
    Basal metabolic rate via the Mifflin-St Jeor equation.

    Args:
        weight: Body weight in kg.
        height: Height in cm.
        age: Age in years.
        gender: "male" selects the male constant; anything else the female one.

    Returns:
        BMR in kcal/day.
    """
    bmr = 10 * weight + 6.25 * height - 5 * age
    return bmr + 5 if gender == "male" else bmr - 161


def calculate_calorie_goal(
    weight: Optional[float],
    height: Optional[float],
    age: Optional[int],
    gender: Optional[str],
    activity_level: Optional[str] = None,
) -> int:
    """
    Estimate total daily energy expenditure.

    Falls back to config.DEFAULT_CALORIE_GOAL when any body measurement
    or the gender is missing, and to the default multiplier for unknown
    activity levels.

    Returns:
        Rounded daily calorie goal.
    """
    if not weight or not height or not age or not gender:
        return config.DEFAULT_CALORIE_GOAL

    multiplier = config.ACTIVITY_MULTIPLIERS.get(
        activity_level or "", config.DEFAULT_ACTIVITY_MULTIPLIER
    )
    # Half-up rounding, not banker's rounding
    goal = math.floor(calculate_bmr(weight, height, age, gender) * multiplier + 0.5)
    logger.debug(f"Calorie goal {goal} (activity={activity_level}, x{multiplier})")
    return goal
