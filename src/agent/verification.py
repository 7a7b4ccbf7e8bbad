"""Post-edit verification: re-read the edited file and run project linters.

Advisory only. A failed verification appends a report to the tool result;
it never turns a successful edit into a failure.
"""

from __future__ import annotations

import asyncio
import shutil
from dataclasses import dataclass, field
from pathlib import Path

import structlog

logger = structlog.get_logger()

# Tool names whose successful execution triggers verification.
EDIT_TOOL_NAMES = frozenset({"edit", "multi_edit", "write"})

_MAX_REPORTED_LINES = 20


@dataclass(frozen=True)
class LinterConfig:
    name: str
    command: tuple[str, ...]
    extensions: frozenset[str]


@dataclass
class VerificationResult:
    success: bool
    lint_errors: list[str] = field(default_factory=list)
    message: str = ""


# (linter, marker files, command prefix, extensions)
_KNOWN_LINTERS: list[tuple[str, tuple[str, ...], tuple[str, ...], frozenset[str]]] = [
    (
        "ruff",
        ("ruff.toml", ".ruff.toml", "pyproject.toml"),
        ("ruff", "check", "--quiet", "--output-format", "concise"),
        frozenset({".py", ".pyi"}),
    ),
    (
        "eslint",
        (
            "eslint.config.js",
            "eslint.config.mjs",
            ".eslintrc",
            ".eslintrc.js",
            ".eslintrc.json",
            ".eslintrc.cjs",
        ),
        ("eslint", "--format", "unix"),
        frozenset({".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs"}),
    ),
    (
        "shellcheck",
        (".shellcheckrc",),
        ("shellcheck", "--format", "gcc"),
        frozenset({".sh", ".bash"}),
    ),
]


def detect_project_linters(project_dir: Path) -> list[LinterConfig]:
    """Linters whose config marker exists in the project root and whose binary is installed."""
    found: list[LinterConfig] = []
    for name, markers, command, extensions in _KNOWN_LINTERS:
        if not any((project_dir / m).exists() for m in markers):
            continue
        if shutil.which(command[0]) is None:
            logger.debug("linter_not_installed", linter=name)
            continue
        found.append(LinterConfig(name=name, command=command, extensions=extensions))
    logger.info(
        "linters_detected", project_dir=str(project_dir), linters=[c.name for c in found]
    )
    return found


async def _run_linter(
    linter: LinterConfig, path: Path, project_dir: Path, timeout_s: float
) -> list[str]:
    proc = await asyncio.create_subprocess_exec(
        *linter.command,
        str(path),
        cwd=str(project_dir),
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )
    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout_s)
    except TimeoutError:
        proc.kill()
        await proc.wait()
        return [f"{linter.name}: timed out after {timeout_s:g}s"]
    if proc.returncode == 0:
        return []
    lines = [ln for ln in stdout.decode(errors="replace").splitlines() if ln.strip()]
    return [f"{linter.name}: {ln}" for ln in lines]


async def verify_edit(
    file_path: str,
    new_content: str | None,
    *,
    project_dir: Path,
    linters: list[LinterConfig],
    timeout_s: float,
) -> VerificationResult:
    """Re-check an edited file: it must exist, contain the new text, and lint clean."""
    path = Path(file_path)
    if not path.is_absolute():
        path = project_dir / path
    if not path.is_file():
        return VerificationResult(success=False, message=f"File not found after edit: {file_path}")
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        return VerificationResult(success=False, message=f"Cannot re-read file: {e}")
    if new_content and new_content not in text:
        return VerificationResult(
            success=False, message="Edited content not found in file after write"
        )

    errors: list[str] = []
    for linter in linters:
        if path.suffix in linter.extensions:
            errors.extend(await _run_linter(linter, path, project_dir, timeout_s))
    return VerificationResult(success=True, lint_errors=errors)


def format_verification(result: VerificationResult) -> str:
    lines: list[str] = []
    if not result.success:
        lines.append(f"Verification failed: {result.message}")
    if result.lint_errors:
        lines.append(f"Lint reported {len(result.lint_errors)} problem(s):")
        lines.extend(f"  {e}" for e in result.lint_errors[:_MAX_REPORTED_LINES])
        if len(result.lint_errors) > _MAX_REPORTED_LINES:
            lines.append(f"  ... {len(result.lint_errors) - _MAX_REPORTED_LINES} more")
    return "\n".join(lines)


class EditVerifier:
    """Runs verification for one project; linter detection is cached after first use."""

    def __init__(self, project_dir: Path, *, timeout_s: float = 10.0) -> None:
        self._project_dir = project_dir
        self._timeout_s = timeout_s
        self._linters: list[LinterConfig] | None = None

    @property
    def linters(self) -> list[LinterConfig]:
        if self._linters is None:
            self._linters = detect_project_linters(self._project_dir)
        return self._linters

    async def advisory(self, file_path: str, new_content: str | None) -> str | None:
        """Formatted advisory block, or None when the edit verifies clean."""
        result = await verify_edit(
            file_path,
            new_content,
            project_dir=self._project_dir,
            linters=self.linters,
            timeout_s=self._timeout_s,
        )
        if result.success and not result.lint_errors:
            return None
        return format_verification(result)
