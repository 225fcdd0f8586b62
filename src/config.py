"""Runtime configuration for the proposer and reviewer loops.

Values come from the environment, after loading `.env` files:
- `agent/.env` (agent-local overrides), then the project-root `.env`
- Variables already present in the process environment always win

Use `PipelineConfig.from_env()` at the entry point and pass the instance
down explicitly; nothing below the entry point reads os.environ.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_API_URL = "https://api.nptelprep.in"
DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_LOOP_SLEEP_MS = 300_000
DEFAULT_REVIEWER_MAX_BATCH = 5
DEFAULT_MAX_TOOL_STEPS = 6
DEFAULT_UNIT_MAX_RETRIES = 2

API_KEY_VARIABLES = ("UPSTREAM_API_KEYS", "GOOGLE_API_KEYS", "GOOGLE_API_KEY")


def load_env_files(project_root: Optional[Path] = None) -> list[str]:
    """Load agent-local and project-root .env files without overriding.

    Returns:
        Paths of the files that were loaded, in load order
    """
    loaded = []
    candidates = []
    if project_root is not None:
        candidates = [project_root / "agent" / ".env", project_root / ".env"]
    else:
        agent_env = find_dotenv(filename=str(Path("agent") / ".env"), usecwd=True)
        root_env = find_dotenv(filename=".env", usecwd=True)
        candidates = [Path(p) for p in (agent_env, root_env) if p]

    for path in candidates:
        if path.exists() and str(path) not in loaded:
            load_dotenv(path, override=False)
            loaded.append(str(path))
    return loaded


def parse_api_keys(environ: dict[str, str]) -> list[str]:
    """Read the upstream credential list (comma-separated) from the environment."""
    for variable in API_KEY_VARIABLES:
        raw = environ.get(variable, "")
        keys = [k.strip() for k in raw.split(",") if k.strip()]
        if keys:
            return keys
    return []


def _int_env(environ: dict[str, str], name: str, default: int, minimum: int = 0) -> int:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got '{raw}'")
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


class PipelineConfig(BaseModel):
    """Settings shared by both agent loops."""

    catalog_api_url: str = Field(
        default=DEFAULT_CATALOG_API_URL,
        description="Base URL of the course-catalog read API",
    )
    api_keys: list[str] = Field(
        default_factory=list,
        description="Ordered upstream credentials used for rotation",
    )
    database_url: str = Field(
        default="",
        description="postgres://... for PostgreSQL; empty selects SQLite",
    )
    sqlite_path: str = Field(default="course_qa.db")

    loop_sleep_ms: int = Field(default=DEFAULT_LOOP_SLEEP_MS, ge=0)
    reviewer_loop_sleep_ms: int = Field(default=DEFAULT_LOOP_SLEEP_MS, ge=0)
    reviewer_max_batch: int = Field(default=DEFAULT_REVIEWER_MAX_BATCH, ge=1)

    agent_model: str = DEFAULT_MODEL
    reviewer_model: str = DEFAULT_MODEL

    changes_dir: str = Field(
        default="agent/changes",
        description="Root of the staged-change queue (pending files live here)",
    )
    reviewer_reports_dir: str = Field(default="agent/reviewer-reports")

    max_tool_steps: int = Field(default=DEFAULT_MAX_TOOL_STEPS, ge=1)
    unit_max_retries: int = Field(default=DEFAULT_UNIT_MAX_RETRIES, ge=0)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[dict[str, str]] = None, load_files: bool = True) -> "PipelineConfig":
        """Build a config from environment variables.

        Args:
            environ: Mapping to read instead of os.environ (tests)
            load_files: Whether to load .env files first

        Raises:
            ValueError: If a numeric variable is malformed
        """
        if environ is None:
            if load_files:
                loaded = load_env_files()
                if loaded:
                    logger.debug(f"Loaded env files: {', '.join(loaded)}")
            environ = dict(os.environ)

        return cls(
            catalog_api_url=environ.get("NPTEL_API_URL", DEFAULT_CATALOG_API_URL).rstrip("/"),
            api_keys=parse_api_keys(environ),
            database_url=environ.get("DATABASE_URL", ""),
            sqlite_path=environ.get("SQLITE_PATH", "course_qa.db"),
            loop_sleep_ms=_int_env(environ, "AGENT_LOOP_SLEEP_MS", DEFAULT_LOOP_SLEEP_MS),
            reviewer_loop_sleep_ms=_int_env(environ, "REVIEWER_LOOP_SLEEP_MS", DEFAULT_LOOP_SLEEP_MS),
            reviewer_max_batch=_int_env(environ, "REVIEWER_MAX_BATCH", DEFAULT_REVIEWER_MAX_BATCH, minimum=1),
            agent_model=environ.get("AGENT_MODEL", DEFAULT_MODEL),
            reviewer_model=environ.get("REVIEWER_MODEL", DEFAULT_MODEL),
            changes_dir=environ.get("AGENT_CHANGES_DIR", "agent/changes"),
            reviewer_reports_dir=environ.get("REVIEWER_REPORTS_DIR", "agent/reviewer-reports"),
            max_tool_steps=_int_env(environ, "MAX_TOOL_STEPS", DEFAULT_MAX_TOOL_STEPS, minimum=1),
            unit_max_retries=_int_env(environ, "UNIT_MAX_RETRIES", DEFAULT_UNIT_MAX_RETRIES),
            log_level=environ.get("LOG_LEVEL", "INFO").upper(),
        )

    def require_api_keys(self) -> list[str]:
        """Return the credential list, failing if none were configured."""
        if not self.api_keys:
            raise RuntimeError(
                "No upstream API keys configured. Set UPSTREAM_API_KEYS "
                "(comma-separated), GOOGLE_API_KEYS or GOOGLE_API_KEY."
            )
        return self.api_keys
