from .settings import Settings, settings
from .meal_policy import MealPolicy

__all__ = ["Settings", "settings", "MealPolicy"]
