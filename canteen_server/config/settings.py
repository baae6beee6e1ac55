from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .meal_policy import MealPolicy


class Settings(BaseSettings):
    # Database
    database_url: str = "duckdb://./data/canteen.duckdb"

    # JWT
    jwt_secret_key: str = "change-me"
    jwt_algorithm: str = "HS256"
    jwt_expire_hours: int = 12

    # API
    api_title: str = "Canteen Ticketing API"
    api_version: str = "1.0.0"
    api_prefix: str = "/api/v1"

    # Runtime
    debug: bool = False
    log_level: str = "INFO"
    expiry_sweep_interval_seconds: int = Field(300, ge=0)  # 0 disables the sweep

    # Pricing and meal-time windows
    meal_policy: MealPolicy = Field(default_factory=MealPolicy)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="CANTEEN_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


# Global settings instance
settings = Settings()
