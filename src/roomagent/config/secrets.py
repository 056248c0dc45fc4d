"""Secret lookup for API keys.

Secrets are looked up in the process environment first, then in a
.env.secrets file (parsed with python-dotenv and cached).
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from dotenv import dotenv_values

SECRETS_FILE = ".env.secrets"


@lru_cache(maxsize=4)
def _load_secrets(secrets_path: Path | None = None) -> dict[str, str | None]:
    path = secrets_path or Path(SECRETS_FILE)
    if not path.exists():
        return {}
    return dotenv_values(path)


def fetch_secret(
    key: str,
    default: str | None = None,
    secrets_path: Path | None = None,
) -> str | None:
    """Fetch a secret from the environment or .env.secrets.

    Real environment variables take precedence so tests can monkeypatch them.

    Example:
        >>> fetch_secret("OPENAI_API_KEY")
        'sk-...'
    """
    value = os.environ.get(key)
    if value is not None:
        return value

    value = _load_secrets(secrets_path).get(key)
    return value if value is not None else default


def clear_secret_cache() -> None:
    """Forget cached .env.secrets contents."""
    _load_secrets.cache_clear()
