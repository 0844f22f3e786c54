from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="EXPERIMENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Statistical defaults
    DEFAULT_SIGNIFICANCE_LEVEL: float = 0.05
    DEFAULT_POWER: float = 0.8
    DEFAULT_BASELINE_RATE: float = 0.05
    DEFAULT_MINIMUM_DETECTABLE_EFFECT: float = 0.2

    # Monte Carlo
    BAYESIAN_SIMULATIONS: int = 10000
    RANDOM_SEED: Optional[int] = None

    # Experiment validation
    TRAFFIC_PERCENT_TOLERANCE: float = 0.5

    # Risk detection
    SRM_MIN_TOTAL_SAMPLES: int = 100
    SRM_CHI_SQUARE_THRESHOLD: float = 3.84  # p < 0.05 at 1 df
    SRM_CRITICAL_DEVIATION: float = 0.1
    NOVELTY_WINDOW_DAYS: int = 7
    NOVELTY_HIGH_RISK_DAYS: int = 3

    # Recommendations and insights
    ETA_DAILY_SAMPLES: int = 500
    REVENUE_OPPORTUNITY_THRESHOLD: float = 100.0


settings = Settings()
