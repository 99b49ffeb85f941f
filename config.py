import logging
import os
from dataclasses import dataclass
from functools import lru_cache

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class Settings:
    db_file: str = "split_app.db"
    currency: str = "INR"
    currency_symbol: str = "₹"
    upi_min_length: int = 7
    lock_timeout: float = 5.0
    app_name: str = "PerSplit"
    log_level: str = "INFO"


def load_settings(env=None) -> Settings:
    env = os.environ if env is None else env
    return Settings(
        db_file=env.get("SPLIT_DB_FILE", Settings.db_file),
        currency=env.get("SPLIT_CURRENCY", Settings.currency),
        currency_symbol=env.get("SPLIT_CURRENCY_SYMBOL", Settings.currency_symbol),
        upi_min_length=int(env.get("SPLIT_UPI_MIN_LENGTH", Settings.upi_min_length)),
        lock_timeout=float(env.get("SPLIT_LOCK_TIMEOUT", Settings.lock_timeout)),
        app_name=env.get("SPLIT_APP_NAME", Settings.app_name),
        log_level=env.get("SPLIT_LOG_LEVEL", Settings.log_level).upper(),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


def configure_logging(level=None):
    logging.basicConfig(level=level or get_settings().log_level, format=LOG_FORMAT)
