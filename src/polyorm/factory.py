# src/polyorm/factory.py
import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .registry import AdapterRegistry
from .utils import setup_logger

logger = setup_logger(__name__)

# env var -> driver, checked in order when no driver is configured
_DRIVER_RULES = [
    ("MONGODB_URI", "mongodb"),
    ("POSTGRES_CONNECTION_STRING", "postgresql"),
    ("POSTGRES_URL", "postgresql"),
    ("DATABASE_URL", "postgresql"),
    ("SQLITE_PATH", "sqlite"),
]


@dataclass
class ConnectionSettings:
    """Backend selection and connection parameters"""

    driver: str = "memory"
    url: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    database: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    connect_retries: int = 3
    options: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_env(cls, prefix: str = "POLYORM_") -> "ConnectionSettings":
        load_dotenv()

        def env(name: str) -> Optional[str]:
            return os.getenv(f"{prefix}{name}")

        driver = env("DRIVER") or cls._detect_driver()
        port = env("PORT")
        retries = env("CONNECT_RETRIES")
        return cls(
            driver=driver,
            url=env("URL"),
            host=env("HOST"),
            port=int(port) if port else None,
            database=env("DATABASE") or (os.getenv("SQLITE_PATH") if driver == "sqlite" else None),
            username=env("USERNAME"),
            password=env("PASSWORD"),
            connect_retries=int(retries) if retries else 3,
        )

    @staticmethod
    def _detect_driver() -> str:
        for env_var, driver in _DRIVER_RULES:
            if os.getenv(env_var):
                return driver

        logger.warning("No backend detected, defaulting to memory")
        return "memory"

    def merged(self, **overrides: Any) -> "ConnectionSettings":
        """Copy with overrides; unknown keys land in ``options``."""
        known = {f.name for f in fields(self)}
        direct = {k: v for k, v in overrides.items() if k in known}
        extra = {k: v for k, v in overrides.items() if k not in known}
        merged = replace(self, **direct)
        if extra:
            merged.options = {**merged.options, **extra}
        return merged


def create_adapter(settings: ConnectionSettings, connection: Any = None):
    """Instantiate the adapter registered under ``settings.driver``."""
    from . import adapters  # noqa: F401  registers built-in backends

    factory = AdapterRegistry.resolve(settings.driver)
    adapter = factory(settings, connection)
    logger.info(f"Adapter selected: {adapter.name}")
    return adapter
