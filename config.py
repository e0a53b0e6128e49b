import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        currency_symbol: str,
        scheduler_enabled: bool,
        vat_registered: bool,
        vat_scheme: str,
        flat_rate_percent: float,
        vat_exempt_categories: tuple[str, ...],
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.currency_symbol = currency_symbol
        self.scheduler_enabled = scheduler_enabled
        self.vat_registered = vat_registered
        self.vat_scheme = vat_scheme
        self.flat_rate_percent = flat_rate_percent
        self.vat_exempt_categories = vat_exempt_categories


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("CLINIC_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "clinic.db"
    database_url = os.getenv("CLINIC_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("CLINIC_TIMEZONE", "Europe/London")
    currency_symbol = os.getenv("CLINIC_CURRENCY_SYMBOL", "£")
    scheduler_enabled = _env_flag("CLINIC_SCHEDULER_ENABLED", "true")
    vat_registered = _env_flag("CLINIC_VAT_REGISTERED", "false")
    vat_scheme = os.getenv("CLINIC_VAT_SCHEME", "standard").strip().lower()
    flat_rate_percent = float(os.getenv("CLINIC_FLAT_RATE_PERCENT", "0"))
    exempt_raw = os.getenv("CLINIC_VAT_EXEMPT_CATEGORIES", "Wellness,Consultation")
    vat_exempt_categories = tuple(
        part.strip() for part in exempt_raw.split(",") if part.strip()
    )
    return Settings(
        database_url=database_url,
        timezone=timezone,
        currency_symbol=currency_symbol,
        scheduler_enabled=scheduler_enabled,
        vat_registered=vat_registered,
        vat_scheme=vat_scheme,
        flat_rate_percent=flat_rate_percent,
        vat_exempt_categories=vat_exempt_categories,
    )
