from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv

from .app_factory import create_app
from .config import load_settings


_REPO_ROOT = Path(__file__).resolve().parents[2]
load_dotenv(dotenv_path=_REPO_ROOT / ".env", override=True)
settings = load_settings()

app = create_app(settings)
