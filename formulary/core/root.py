"""InstallRoot: explicit handle on one installation prefix and its state.

Nothing in the pipeline reaches for global state: the prefix, its ``bin``
directory, the manifest, the journal and the lock directory are all reached
through an ``InstallRoot`` passed in by the caller, so several independent
roots can coexist in one process.
"""

from __future__ import annotations

from pathlib import Path

from formulary.config import FormularySettings
from formulary.core.journal import RunJournal
from formulary.core.manifest import InstallManifest


class InstallRoot:
    """One installation prefix.

    Layout::

        <prefix>/bin/                      installed binaries
        <state_dir>/manifest.db            installed files and installations
        <state_dir>/journal.db             run journal
        <state_dir>/locks/                 per-formula advisory locks
        <state_dir>/cache/                 archives kept by ``fetch``
    """

    def __init__(self, prefix: Path, state_dir: Path | None = None) -> None:
        self.prefix = Path(prefix).expanduser().resolve()
        self.bin_dir = self.prefix / "bin"
        self.state_dir = (
            Path(state_dir).expanduser().resolve()
            if state_dir is not None
            else self.prefix / "var" / "formulary"
        )
        self.locks_dir = self.state_dir / "locks"
        self.cache_dir = self.state_dir / "cache"
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.manifest = InstallManifest(self.state_dir / "manifest.db")
        self.journal = RunJournal(self.state_dir / "journal.db")

    @classmethod
    def from_settings(cls, settings: FormularySettings) -> InstallRoot:
        return cls(settings.prefix, settings.state_dir)

    def placeholders(self) -> dict[str, str]:
        """Values for ``{bin}`` and ``{prefix}`` in test commands."""
        return {"bin": str(self.bin_dir), "prefix": str(self.prefix)}

    def __repr__(self) -> str:
        return f"<InstallRoot prefix={str(self.prefix)!r}>"
