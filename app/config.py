"""
Application configuration with automatic environment detection.
Settings are built once at startup and injected into the services; nothing below
app/services reads os.environ directly.
"""
import os
from typing import List, Optional
from dotenv import load_dotenv

from app.exceptions import ConfigurationError

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


class Settings:
    """Application settings read from the environment"""

    # "Full price" price-list in Odoo; used when ODOO_PRICELIST_ID is not set
    DEFAULT_PRICELIST_ID = 3

    def __init__(self):
        # Environment detection
        self.ENV = os.getenv("ENV", "DEV").upper()
        self.IS_PRODUCTION = self.ENV in ("PROD", "PRODUCTION")
        self.IS_DEVELOPMENT = not self.IS_PRODUCTION

        # Render sets RENDER=true, Vercel sets VERCEL=true, Heroku sets DYNO
        self.IS_CLOUD = (
            os.getenv("RENDER", "").lower() == "true"
            or os.getenv("VERCEL", "").lower() == "true"
            or bool(os.getenv("DYNO"))
        )

        # Server configuration
        self.HOST = os.getenv("HOST", "0.0.0.0" if self.IS_CLOUD else "127.0.0.1")
        self.PORT = _env_int("PORT", 8000)

        # Odoo JSON-RPC
        self.ODOO_URL = (os.getenv("ODOO_URL") or "").strip().rstrip("/")
        self.ODOO_DB = (os.getenv("ODOO_DB") or "").strip()
        self.ODOO_UID = _env_int("ODOO_UID", 0)
        self.ODOO_API_KEY = (os.getenv("ODOO_API_KEY") or "").strip()
        self.ODOO_PRICELIST_ID = _env_int("ODOO_PRICELIST_ID", self.DEFAULT_PRICELIST_ID)
        # Managed SKU namespace: only products whose default_code starts with this are synced
        self.ODOO_SKU_PREFIX = os.getenv("ODOO_SKU_PREFIX", "PAY").strip()
        # Optional custom field copied to a Shopify metafield (e.g. x_studio_tire_name)
        self.ODOO_DISPLAY_FIELD = (os.getenv("ODOO_DISPLAY_FIELD") or "").strip()

        # Shopify Admin API
        self.SHOPIFY_STORE_DOMAIN = (os.getenv("SHOPIFY_STORE_DOMAIN") or "").strip()
        self.SHOPIFY_ACCESS_TOKEN = (os.getenv("SHOPIFY_ACCESS_TOKEN") or "").strip()
        self.SHOPIFY_LOCATION_ID = _env_int("SHOPIFY_LOCATION_ID", 0)
        self.SHOPIFY_API_VERSION = os.getenv("SHOPIFY_API_VERSION", "2024-01").strip()
        self.SHOPIFY_VENDOR = os.getenv("SHOPIFY_VENDOR", "Paytton Tires")
        self.SHOPIFY_METAFIELD_NAMESPACE = os.getenv("SHOPIFY_METAFIELD_NAMESPACE", "custom")
        self.SHOPIFY_METAFIELD_KEY = os.getenv("SHOPIFY_METAFIELD_KEY", "tire_name")
        self.SHOPIFY_MAX_RETRIES = _env_int("SHOPIFY_MAX_RETRIES", 3)
        self.SHOPIFY_RETRY_AFTER_DEFAULT = _env_float("SHOPIFY_RETRY_AFTER_DEFAULT", 2.0)
        self.SHOPIFY_WRITE_DELAY_MS = _env_int("SHOPIFY_WRITE_DELAY_MS", 120)

        # Sync policy (see app/services/pricing.py)
        self.SYNC_PAGE_SIZE = _env_int("SYNC_PAGE_SIZE", 50)
        self.SYNC_MAX_OFFSET = _env_int("SYNC_MAX_OFFSET", 5000)
        self.SYNC_STATUS_POLICY = os.getenv("SYNC_STATUS_POLICY", "price_only").strip().lower()
        self.SYNC_PRICE_FALLBACK = os.getenv("SYNC_PRICE_FALLBACK", "list_price").strip().lower()
        self.SYNC_MIN_VALID_PRICE = _env_float("SYNC_MIN_VALID_PRICE", 1.0)

        # Outbound HTTP
        self.HTTP_TIMEOUT_SECONDS = _env_float("HTTP_TIMEOUT_SECONDS", 30.0)

        # Logging
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if self.IS_PRODUCTION else "DEBUG").upper()

    @property
    def ALLOWED_ORIGINS(self) -> List[str]:
        """CORS origins from ALLOWED_ORIGINS (comma-separated), de-duplicated in order"""
        origins: List[str] = []
        for origin in os.getenv("ALLOWED_ORIGINS", "").split(","):
            origin = origin.strip()
            if origin and origin not in origins:
                origins.append(origin)
        return origins

    def missing_odoo(self) -> List[str]:
        missing = []
        if not self.ODOO_URL:
            missing.append("ODOO_URL")
        if not self.ODOO_DB:
            missing.append("ODOO_DB")
        if not self.ODOO_UID:
            missing.append("ODOO_UID")
        if not self.ODOO_API_KEY:
            missing.append("ODOO_API_KEY")
        return missing

    def missing_shopify(self) -> List[str]:
        missing = []
        if not self.SHOPIFY_STORE_DOMAIN:
            missing.append("SHOPIFY_STORE_DOMAIN")
        if not self.SHOPIFY_ACCESS_TOKEN:
            missing.append("SHOPIFY_ACCESS_TOKEN")
        return missing

    def require_odoo(self) -> None:
        """Fail fast when the Odoo connection is not configured"""
        missing = self.missing_odoo()
        if missing:
            raise ConfigurationError(f"Missing Odoo configuration: {', '.join(missing)}")

    def require_shopify(self) -> None:
        """Fail fast when the Shopify connection is not configured"""
        missing = self.missing_shopify()
        if missing:
            raise ConfigurationError(f"Missing Shopify configuration: {', '.join(missing)}")

    def require_location(self) -> int:
        if not self.SHOPIFY_LOCATION_ID:
            raise ConfigurationError("SHOPIFY_LOCATION_ID is not set; inventory levels cannot be written")
        return self.SHOPIFY_LOCATION_ID

    def __str__(self):
        return f"Settings(ENV={self.ENV}, IS_PRODUCTION={self.IS_PRODUCTION}, IS_CLOUD={self.IS_CLOUD})"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Process-wide settings, built on first use"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
