from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv


def load_env(root: Path | None = None) -> bool:
    """
    Load .env into the process environment (OPENAI_API_KEY, model tiers,
    store locations). Existing variables are not overridden.

    Returns True when a file was loaded.
    """
    base = root or Path(".")

    # Prefer repo-root .env
    env_path = base / ".env"
    if env_path.is_file():
        return load_dotenv(dotenv_path=env_path)

    # Fallback: common pattern ".env/.env"
    alt = base / ".env" / ".env"
    if alt.is_file():
        return load_dotenv(dotenv_path=alt)
    return False
