from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv


def load_project_dotenv() -> bool:
    """
    Load `.env` from the repo root (or the package dir) into `os.environ`.

    The Redis-backed store, lock and trigger host read REDIS_URL via `os.getenv`;
    `pydantic-settings` reads `.env` into Settings but never exports it.
    Existing environment variables always win.
    """
    project_root = Path(__file__).resolve().parents[2]
    loaded = False
    for p in (project_root / ".env", project_root / "assessment_agent" / ".env"):
        if p.exists():
            loaded = bool(load_dotenv(p, override=False)) or loaded
    return loaded
