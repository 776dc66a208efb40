"""Environment variable loading helpers.

Configuration comes from the process environment, optionally seeded from
dotenv-style files in the project root.

Load order (existing process env vars are never overridden):
- .env
- .env.<DJANGO_ENV> (e.g. .env.dev, .env.staging) when DJANGO_ENV is set

In production, prefer real environment variables instead of dotenv files.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

_DEV_ALIASES = {"development": "dev", "local": "dev"}


def current_env() -> str:
    """Return the normalized DJANGO_ENV name ("" when unset)."""
    name = os.environ.get("DJANGO_ENV", "").strip().lower()
    return _DEV_ALIASES.get(name, name)


def load_env(base_dir: Path | None = None) -> None:
    """Load .env files into process environment.

    Safe to call multiple times.

    Args:
        base_dir: Project root directory. Defaults to config/.. .
    """
    if base_dir is None:
        base_dir = Path(__file__).resolve().parent.parent

    load_dotenv(base_dir / ".env", override=False)

    env_name = current_env()
    if env_name:
        load_dotenv(base_dir / f".env.{env_name}", override=False)


def env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value not in (None, "") else default


def env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value not in (None, "") else default


def env_list(name: str, default: list[str] | None = None) -> list[str]:
    value = os.environ.get(name)
    if not value:
        return list(default or [])
    return [item.strip() for item in value.split(",") if item.strip()]
