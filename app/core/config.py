from decimal import Decimal
from pydantic_settings import BaseSettings
from pydantic import Field

class Settings(BaseSettings):
    PROJECT_NAME: str = "PharmaCare POS API"
    DATABASE_URL: str = "sqlite:///./pharmacare.db"
    SECRET_KEY: str = "supersecretkey_change_me_in_production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 12 # one shift

    # Billing
    TAX_RATE: Decimal = Decimal("0.05")
    BILL_NUMBER_PREFIX: str = "BILL"
    BILL_HISTORY_MAX_LIMIT: int = 100
    CURRENCY_SYMBOL: str = "Rs."

    # Cart
    CART_TTL_DAYS: int = 30
    MAX_ITEM_QUANTITY: int = 100
    CART_CLEANUP_INTERVAL_SECONDS: int = 3600 # 0 disables the background purge

    # Bill header
    PHARMACY_NAME: str = "PHARMACARE"
    PHARMACY_TAGLINE: str = "Complete Pharmacy Solution"
    PHARMACY_PHONE: str = "+91-9876543210"
    PHARMACY_EMAIL: str = Field("info@pharmacare.com", validation_alias="SUPPORT_EMAIL")

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
