import os
from functools import lru_cache
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Settings:
    """Application settings loaded from environment variables with defaults.

    Every value can be overridden through the environment (or a local .env
    file), while the defaults are good enough for local development.
    """

    # Project metadata
    PROJECT_NAME = "Collectibles Revaluation"
    PROJECT_VERSION = "0.1.0"

    # Database Settings
    DB_HOST = os.getenv("DB_HOST", "localhost")
    DB_PORT = os.getenv("DB_PORT", "3306")
    DB_NAME = os.getenv("DB_NAME", "collectibles")
    DB_USER = os.getenv("DB_USER", "user")
    DB_PASS = os.getenv("DB_PASSWORD", "password")

    # Money
    BASE_CURRENCY = os.getenv("BASE_CURRENCY", "USD").upper()
    FX_EUR_USD = float(os.getenv("FX_EUR_USD", "1.08"))

    # Vendor price feeds
    VENDOR_TIMEOUT = int(os.getenv("VENDOR_TIMEOUT", "30"))
    VENDOR_MIN_DELAY = float(os.getenv("VENDOR_MIN_DELAY", "0.1"))
    VENDOR_MAX_DELAY = float(os.getenv("VENDOR_MAX_DELAY", "0.5"))
    VENDOR_USER_AGENT = os.getenv(
        "VENDOR_USER_AGENT", "CollectiblesRevaluation/0.1.0 (price sync)"
    )
    YGOPRODECK_API_URL = os.getenv(
        "YGOPRODECK_API_URL", "https://db.ygoprodeck.com/api/v7/cardinfo.php"
    )
    POKEMONTCG_API_URL = os.getenv("POKEMONTCG_API_URL", "https://api.pokemontcg.io/v2")
    POKEMONTCG_API_KEY = os.getenv("POKEMONTCG_API_KEY")
    SCRYFALL_API_URL = os.getenv("SCRYFALL_API_URL", "https://api.scryfall.com")

    # Movers request clamps
    MOVERS_MAX_DAYS = int(os.getenv("MOVERS_MAX_DAYS", "90"))
    MOVERS_MAX_LIMIT = int(os.getenv("MOVERS_MAX_LIMIT", "500"))

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    @property
    def DATABASE_URL(self) -> str:
        """Full SQLAlchemy URL; DATABASE_URL wins over the DB_* parts."""
        override = os.getenv("DATABASE_URL")
        if override:
            return override
        return f"mysql+pymysql://{self.DB_USER}:{self.DB_PASS}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()


# For direct access in other modules
settings = get_settings()
