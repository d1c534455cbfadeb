from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from inspection_engine.db.config import get_db_settings, sqlite_path_from_url
from inspection_engine.report.injection import DEFAULT_INJECTION_MODE, INJECTION_MODES

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class EngineSettings:
    project_root: Path
    rules_dir: Path
    database_url: str
    preview_draft_dimensions: bool
    report_injection_mode: str


def default_project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _absolute_sqlite_url(url: str, root: Path) -> str:
    p = sqlite_path_from_url(url, root)
    return url if p is None else f"sqlite:///{p.as_posix()}"


def ensure_sqlite_parent(url: str) -> None:
    p = sqlite_path_from_url(url, Path.cwd())
    if p is not None:
        p.parent.mkdir(parents=True, exist_ok=True)


def get_settings(project_root: Path | None = None) -> EngineSettings:
    """Environment-driven runtime settings; relative paths resolve against the project root."""
    root = Path(project_root) if project_root else default_project_root()
    rules_env = os.environ.get("RULES_DIR", "").strip()
    rules_dir = Path(rules_env) if rules_env else root / "rules"
    if not rules_dir.is_absolute():
        rules_dir = (root / rules_dir).resolve()

    mode = os.environ.get("REPORT_INJECTION_MODE", "").strip().lower() or DEFAULT_INJECTION_MODE
    if mode not in INJECTION_MODES:
        mode = DEFAULT_INJECTION_MODE

    return EngineSettings(
        project_root=root,
        rules_dir=rules_dir,
        database_url=_absolute_sqlite_url(get_db_settings().database_url, root),
        preview_draft_dimensions=os.environ.get("PREVIEW_DRAFT_DIMENSIONS", "").strip().lower() in _TRUTHY,
        report_injection_mode=mode,
    )
