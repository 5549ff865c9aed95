"""
Relay configuration loaded from the environment (and .env via python-dotenv)
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv

from errors import ConfigError

DEFAULT_HOST = "https://openapi.tuyaus.com"
DEFAULT_PORT = 3000

REQUIRED_VARS = ("TUYA_ACCESS_KEY", "TUYA_SECRET_KEY", "TUYA_DEVICE_ID")


@dataclass(frozen=True)
class TuyaConfig:
    host: str
    access_key: str
    secret_key: str
    device_id: str
    port: int = DEFAULT_PORT
    environment: str = "development"
    log_level: str = "INFO"
    cors_origins: Tuple[str, ...] = ("*",)


def load_config(environ: Optional[Mapping[str, str]] = None) -> TuyaConfig:
    """
    Build the config from environment variables.
    Raises ConfigError naming every missing credential.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    missing = [name for name in REQUIRED_VARS if not (environ.get(name) or "").strip()]
    if missing:
        raise ConfigError(missing)

    try:
        port = int(environ.get("PORT", DEFAULT_PORT))
    except ValueError:
        port = DEFAULT_PORT

    origins = tuple(o.strip() for o in environ.get("CORS_ORIGINS", "*").split(",") if o.strip())

    return TuyaConfig(
        host=(environ.get("TUYA_HOST") or DEFAULT_HOST).strip().rstrip("/"),
        access_key=environ["TUYA_ACCESS_KEY"].strip(),
        secret_key=environ["TUYA_SECRET_KEY"].strip(),
        device_id=environ["TUYA_DEVICE_ID"].strip(),
        port=port,
        environment=environ.get("APP_ENV", "development"),
        log_level=environ.get("LOG_LEVEL", "INFO").upper(),
        cors_origins=origins or ("*",),
    )
