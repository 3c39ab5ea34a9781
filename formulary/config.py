"""Runtime configuration — env-driven via pydantic-settings.

Every setting can be overridden with a ``FORMULARY_*`` environment variable
or a ``.env`` file in the working directory.

Examples
--------
Override via environment::

    export FORMULARY_PREFIX=/opt/formulary
    export FORMULARY_QUIET_TIMEOUT=60
    export FORMULARY_LOG_LEVEL=DEBUG
"""

from __future__ import annotations

import tempfile
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FormularySettings(BaseSettings):
    """Interpreter configuration.

    ``state_dir`` and ``tmp_dir`` are derived when left unset: the state
    lives under the prefix, temporaries under the system temp directory.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="FORMULARY_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Installation tree
    prefix: Path = Field(default_factory=lambda: Path.home() / ".formulary")
    state_dir: Path | None = None
    tmp_dir: Path | None = None

    # Where bare formula names are looked up, in order
    formula_path: list[Path] = Field(default_factory=lambda: [Path("Formula")])

    # Network
    connect_timeout: float = 10.0
    quiet_timeout: float = 30.0
    chunk_size: int = 64 * 1024
    user_agent: str = "formulary/0.1"

    # Subprocesses
    build_timeout: float = 900.0
    test_timeout: float = 60.0
    stderr_tail_lines: int = 40
    output_truncate: int = 2000

    # Observability
    log_level: str = "INFO"

    @property
    def resolved_state_dir(self) -> Path:
        """State directory (manifest, journal, locks, cache)."""
        return self.state_dir or self.prefix / "var" / "formulary"

    @property
    def resolved_tmp_dir(self) -> Path:
        """Root for per-run workspaces."""
        return self.tmp_dir or Path(tempfile.gettempdir())
