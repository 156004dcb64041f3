from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from pathlib import Path

from .env_utils import env_int, env_str


logger = logging.getLogger(__name__)

DEFAULT_CUSTOMERIO_BASE_URL = "https://api.customer.io/v1"


def _read_text_if_exists(path: Path) -> str | None:
    try:
        if not path.exists():
            return None
        value = path.read_text(encoding="utf-8").strip()
        return value or None
    except OSError:
        return None


@dataclass(frozen=True)
class Settings:
    data_dir: Path
    db_url: str | None
    db_path: Path
    jwt_secret: str
    jwt_exp_minutes: int
    cors_origins: list[str]
    source_timeout_seconds: int
    customerio_base_url: str
    response_items_cap: int
    permissions_file: Path | None
    log_level: str


def load_settings() -> Settings:
    repo_root = Path(__file__).resolve().parents[2]

    data_dir_raw = env_str("DATA_DIR", None)
    data_dir = Path(data_dir_raw).expanduser().resolve() if data_dir_raw else (repo_root / ".chartdata").resolve()
    data_dir.mkdir(parents=True, exist_ok=True)

    db_url = (env_str("DB_URL", "") or "").strip() or None
    default_db_path = data_dir / "chartdata.db"
    db_path = Path(env_str("DB_PATH", str(default_db_path)) or str(default_db_path)).resolve()

    jwt_secret = env_str("JWT_SECRET", None)
    if not jwt_secret:
        secret_path = data_dir / "jwt_secret"
        jwt_secret = _read_text_if_exists(secret_path)
        if not jwt_secret:
            jwt_secret = secrets.token_urlsafe(48)
            secret_path.write_text(jwt_secret, encoding="utf-8")
            logger.info("generated a new JWT secret in %s", secret_path)

    cors_origins = [
        origin.strip()
        for origin in (env_str("CORS_ORIGINS", "http://localhost:4018,http://127.0.0.1:4018") or "").split(",")
        if origin.strip()
    ]

    permissions_raw = env_str("PERMISSIONS_FILE", None)
    permissions_file = Path(permissions_raw).expanduser().resolve() if permissions_raw else None

    return Settings(
        data_dir=data_dir,
        db_url=db_url,
        db_path=db_path,
        jwt_secret=jwt_secret,
        jwt_exp_minutes=env_int("JWT_EXP_MINUTES", 7 * 24 * 60),
        cors_origins=cors_origins,
        source_timeout_seconds=max(1, env_int("SOURCE_TIMEOUT_SECONDS", 30)),
        customerio_base_url=(
            env_str("CUSTOMERIO_BASE_URL", DEFAULT_CUSTOMERIO_BASE_URL) or DEFAULT_CUSTOMERIO_BASE_URL
        ).rstrip("/"),
        response_items_cap=max(1, env_int("RESPONSE_ITEMS_CAP", 20)),
        permissions_file=permissions_file,
        log_level=(env_str("LOG_LEVEL", "INFO") or "INFO").upper(),
    )
