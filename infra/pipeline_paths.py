"""Path conventions for the source metadata table and its timeline.

All code that needs to know where commits or data files live should go
through :class:`infra.pipeline_paths.SourcePaths`.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List


def _p(path: str | Path) -> Path:
    return path if isinstance(path, Path) else Path(str(path))


@dataclass(frozen=True)
class SourcePaths:
    """
    Central path conventions for one source table.

    Layout:
      {src_path}/.timeline/<instant>.commit         completed commits (JSON)
      {src_path}/.timeline/<instant>.inflight       ignored
      {src_path}/.timeline/archived/<instant>.commit no longer retained
      {src_path}/<partition dirs>/<file>.<format>   metadata table data files

    This class should be the ONLY place that knows the canonical layout.
    """

    src_path: Path

    timeline_dirname: str = ".timeline"
    archived_dirname: str = "archived"
    commit_suffix: str = ".commit"

    def __post_init__(self) -> None:
        # Validate the important invariants early so misuse fails fast.
        if not isinstance(self.src_path, Path):
            raise TypeError(f"src_path must be a pathlib.Path (got {type(self.src_path)})")

        for dname in ("timeline_dirname", "archived_dirname"):
            v = getattr(self, dname)
            if not isinstance(v, str) or not v.strip():
                raise ValueError(f"{dname} must be a non-empty string")
            if "/" in v or "\\" in v:
                raise ValueError(f"{dname} must be a simple directory name, not a path: {v!r}")

        if not self.commit_suffix.startswith("."):
            raise ValueError(f"commit_suffix must start with '.': {self.commit_suffix!r}")

    # -------------------------
    # Resolved directories
    # -------------------------

    def timeline_dir(self) -> Path:
        return self.src_path / self.timeline_dirname

    def archived_dir(self) -> Path:
        return self.timeline_dir() / self.archived_dirname

    def commit_file(self, instant: str) -> Path:
        return self.timeline_dir() / f"{instant}{self.commit_suffix}"

    def archived_commit_file(self, instant: str) -> Path:
        return self.archived_dir() / f"{instant}{self.commit_suffix}"

    def data_file(self, relative: str) -> Path:
        """Resolve a data file path recorded (relative to src_path) in a commit."""
        rel = Path(relative)
        if rel.is_absolute() or ".." in rel.parts:
            raise ValueError(f"data file must be relative to the source path: {relative!r}")
        return self.src_path / rel

    # -------------------------
    # Listings
    # -------------------------

    def instant_from_commit_file(self, path: Path) -> str | None:
        """Return the instant for a completed commit file name, else None."""
        if not path.name.endswith(self.commit_suffix):
            return None
        instant = path.name[: -len(self.commit_suffix)]
        return instant or None

    def list_data_files(self, extension: str) -> List[Path]:
        """All data files of the table, skipping hidden directories such as the timeline."""
        ext = extension if extension.startswith(".") else f".{extension}"
        if not self.src_path.exists():
            return []
        out: List[Path] = []
        for p in self.src_path.rglob(f"*{ext}"):
            rel_parts = p.relative_to(self.src_path).parts
            if any(part.startswith(".") for part in rel_parts[:-1]):
                continue
            if p.is_file():
                out.append(p)
        return sorted(out)

    # -------------------------
    # Constructors
    # -------------------------

    @classmethod
    def for_source(cls, src_path: str | Path) -> "SourcePaths":
        """Preferred constructor for callers holding a configured string path."""
        return cls(src_path=_p(src_path))
