"""
Server settings, read from the environment.

A ``.env`` file in the working directory (or the path given to
``load_settings``) is loaded first; real environment variables win over it.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from promptgraph.flow.serializer import DEFAULT_SHARE_LIMIT


@dataclass(frozen=True)
class Settings:
    state_dir: Path = Path("~/.promptgraph").expanduser()
    autosave_seconds: float = 60.0
    share_url: Optional[str] = None
    share_max_bytes: int = DEFAULT_SHARE_LIMIT
    public_url: str = "http://localhost:3001/"
    host: str = "0.0.0.0"
    port: int = 3001
    log_level: str = "INFO"


def _env(name: str, default: str) -> str:
    value = os.environ.get(name)
    return value if value not in (None, "") else default


def load_settings(env_file: Optional[str] = None) -> Settings:
    load_dotenv(env_file, override=False)
    return Settings(
        state_dir=Path(_env("PROMPTGRAPH_STATE_DIR", "~/.promptgraph")).expanduser(),
        autosave_seconds=float(_env("PROMPTGRAPH_AUTOSAVE_SECONDS", "60")),
        share_url=os.environ.get("PROMPTGRAPH_SHARE_URL") or None,
        share_max_bytes=int(_env("PROMPTGRAPH_SHARE_MAX_BYTES", str(DEFAULT_SHARE_LIMIT))),
        public_url=_env("PROMPTGRAPH_PUBLIC_URL", "http://localhost:3001/"),
        host=_env("PROMPTGRAPH_HOST", "0.0.0.0"),
        port=int(_env("PROMPTGRAPH_PORT", "3001")),
        log_level=_env("PROMPTGRAPH_LOG_LEVEL", "INFO").upper(),
    )
