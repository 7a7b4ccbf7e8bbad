from __future__ import annotations

from pathlib import Path

import structlog

from src.infra.errors import ToolError

logger = structlog.get_logger()

# Directories skipped by listing and search tools.
IGNORED_DIRS = frozenset(
    {".git", "node_modules", "__pycache__", ".venv", "venv", ".mypy_cache", ".pytest_cache", "dist", "build"}
)


def resolve_in_project(raw_path: str, project_dir: Path) -> Path:
    """Resolve a relative or absolute path, refusing anything outside project_dir.

    Resolution follows symlinks, so ".." and symlink escapes are both caught.
    """
    root = project_dir.resolve()
    target = (root / raw_path).resolve()
    if not target.is_relative_to(root):
        logger.warning("path_escape_blocked", path=raw_path, resolved=str(target))
        raise ToolError(f"Path escapes project directory: {raw_path}", code="ACCESS_DENIED")
    return target


def display_path(path: Path, project_dir: Path) -> str:
    return str(path.relative_to(project_dir.resolve()))
