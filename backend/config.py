from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # App
    APP_ENV: str = "development"
    DEBUG: bool = True

    # MongoDB
    MONGO_URL: str = "mongodb://localhost:27017"
    DB_NAME: str = "Brewpoints"
    MONGO_TRANSACTIONS: bool = True   # False sur un mongod standalone (pas de replica set)

    # JWT
    JWT_SECRET: str = "changeme_minimum_32_chars_here_please"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 120

    # Gains (INR)
    POINTS_PER_CURRENCY_UNIT: float = 0.1   # 0.1 point par ₹1
    MIN_ORDER_AMOUNT:         float = 100.0
    FIRST_ORDER_MULTIPLIER:   float = 2.0
    FESTIVAL_MULTIPLIER:      float = 3.0
    BIRTHDAY_BONUS_POINTS:    int   = 100

    # Utilisation des points
    REDEMPTION_RATE:           float = 1.0    # 1 point = ₹1
    MIN_REDEMPTION:            int   = 1
    MAX_REDEMPTION_PERCENTAGE: float = 0.50   # 50 % de la commande au maximum
    MAX_REDEMPTION_AMOUNT:     float = 500.0

    # Remise de bienvenue (première commande, sans coût en points)
    FIRST_TIME_DISCOUNT_ENABLED: bool  = True
    FIRST_TIME_DISCOUNT:         float = 100.0

    # Remises par palier
    BRONZE_FLAT_DISCOUNT:  float = 10.0
    PLATINUM_FIXED_BONUS:  float = 25.0
    LOYALTY_TIERS: list[dict] = [
        {"name": "Bronze",   "min_points": 0,    "discount_percentage": 0.02,
         "max_discount_per_order": 50,  "points_required_to_redeem": 50,  "earning_multiplier": 1.0},
        {"name": "Silver",   "min_points": 500,  "discount_percentage": 0.05,
         "max_discount_per_order": 100, "points_required_to_redeem": 100, "earning_multiplier": 1.25},
        {"name": "Gold",     "min_points": 1000, "discount_percentage": 0.10,
         "max_discount_per_order": 150, "points_required_to_redeem": 200, "earning_multiplier": 1.5},
        {"name": "Platinum", "min_points": 2500, "discount_percentage": 0.15,
         "max_discount_per_order": 300, "points_required_to_redeem": 300, "earning_multiplier": 2.0},
    ]

    # QR / code-barres
    TOKEN_TTL_MINUTES:   int = 15
    LEDGER_MAX_RETRIES:  int = 5
    RATE_LIMIT_ENABLED:  bool = True
    PHONE_COUNTRY_CODES: list[str] = ["+91", "91"]

    model_config = SettingsConfigDict(
        env_file=[".env", "../.env"],  # cherche dans backend/ puis dans la racine
        case_sensitive=True,
        extra="ignore",
    )

    @field_validator("LEDGER_MAX_RETRIES")
    @classmethod
    def retries_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("LEDGER_MAX_RETRIES doit être >= 1")
        return v


settings = Settings()
