"""Tests for the built-in file, search, shell and todo tools."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from src.agent.approval import PendingApprovalStore, PlanModeMachine
from src.infra.errors import ToolError
from src.session.todos import TodoStore
from src.tools.base import AgentMode
from src.tools.builtins import register_builtins
from src.tools.builtins.bash import BashTool
from src.tools.builtins.edit_file import EditFileTool
from src.tools.builtins.glob_files import GlobTool
from src.tools.builtins.grep import GrepTool
from src.tools.builtins.list_dir import ListDirTool
from src.tools.builtins.read_file import ReadFileTool
from src.tools.builtins.todo import TodoReadTool, TodoWriteTool
from src.tools.builtins.write_file import WriteFileTool
from src.tools.context import ToolContext
from src.tools.registry import ToolRegistry


@pytest.fixture()
def ctx(tmp_path: Path) -> ToolContext:
    return ToolContext(session_id="s1", project_dir=tmp_path, environment_id="s1")


class TestReadFile:
    @pytest.mark.asyncio
    async def test_numbered_lines(self, tmp_path, ctx):
        (tmp_path / "a.py").write_text("one\ntwo\nthree\n")
        out = await ReadFileTool().execute({"file_path": "a.py"}, ctx)
        assert out.splitlines() == ["     1\tone", "     2\ttwo", "     3\tthree"]

    @pytest.mark.asyncio
    async def test_offset_and_limit(self, tmp_path, ctx):
        (tmp_path / "a.py").write_text("\n".join(f"line{i}" for i in range(1, 11)))
        out = await ReadFileTool().execute({"file_path": "a.py", "offset": 3, "limit": 2}, ctx)
        assert "line3" in out
        assert "line4" in out
        assert "line5" not in out
        assert "(showing lines 3-4 of 10)" in out

    @pytest.mark.asyncio
    async def test_missing_file(self, ctx):
        with pytest.raises(ToolError) as exc_info:
            await ReadFileTool().execute({"file_path": "nope.py"}, ctx)
        assert exc_info.value.code == "FILE_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_parent_traversal_denied(self, ctx):
        with pytest.raises(ToolError) as exc_info:
            await ReadFileTool().execute({"file_path": "../../etc/passwd"}, ctx)
        assert exc_info.value.code == "ACCESS_DENIED"

    @pytest.mark.asyncio
    async def test_absolute_path_outside_denied(self, ctx):
        with pytest.raises(ToolError) as exc_info:
            await ReadFileTool().execute({"file_path": "/etc/hostname"}, ctx)
        assert exc_info.value.code == "ACCESS_DENIED"

    @pytest.mark.asyncio
    async def test_symlink_escape_denied(self, tmp_path, ctx):
        outside = tmp_path.parent / f"{tmp_path.name}-outside.txt"
        outside.write_text("secret")
        os.symlink(outside, tmp_path / "link.txt")
        try:
            with pytest.raises(ToolError) as exc_info:
                await ReadFileTool().execute({"file_path": "link.txt"}, ctx)
            assert exc_info.value.code == "ACCESS_DENIED"
        finally:
            outside.unlink()


class TestWriteAndEdit:
    @pytest.mark.asyncio
    async def test_write_creates_parents(self, tmp_path, ctx):
        result = await WriteFileTool().execute(
            {"file_path": "pkg/mod.py", "content": "x = 1\n"}, ctx
        )
        assert result == {"success": True, "file_path": "pkg/mod.py", "created": True, "size": 6}
        assert (tmp_path / "pkg" / "mod.py").read_text() == "x = 1\n"

    @pytest.mark.asyncio
    async def test_write_overwrites(self, tmp_path, ctx):
        (tmp_path / "a.txt").write_text("old")
        result = await WriteFileTool().execute({"file_path": "a.txt", "content": "new"}, ctx)
        assert result["created"] is False
        assert (tmp_path / "a.txt").read_text() == "new"

    @pytest.mark.asyncio
    async def test_edit_unique_match(self, tmp_path, ctx):
        (tmp_path / "a.py").write_text("def f():\n    return 1\n")
        result = await EditFileTool().execute(
            {"file_path": "a.py", "old_string": "return 1", "new_string": "return 2"}, ctx
        )
        assert result["replacements"] == 1
        assert "return 2" in (tmp_path / "a.py").read_text()

    @pytest.mark.asyncio
    async def test_edit_ambiguous_match(self, tmp_path, ctx):
        (tmp_path / "a.py").write_text("x = 1\nx = 1\n")
        with pytest.raises(ToolError) as exc_info:
            await EditFileTool().execute(
                {"file_path": "a.py", "old_string": "x = 1", "new_string": "x = 2"}, ctx
            )
        assert exc_info.value.code == "AMBIGUOUS_MATCH"

    @pytest.mark.asyncio
    async def test_edit_replace_all(self, tmp_path, ctx):
        (tmp_path / "a.py").write_text("x = 1\nx = 1\n")
        result = await EditFileTool().execute(
            {
                "file_path": "a.py",
                "old_string": "x = 1",
                "new_string": "x = 2",
                "replace_all": True,
            },
            ctx,
        )
        assert result["replacements"] == 2
        assert (tmp_path / "a.py").read_text() == "x = 2\nx = 2\n"

    @pytest.mark.asyncio
    async def test_edit_no_match(self, tmp_path, ctx):
        (tmp_path / "a.py").write_text("x = 1\n")
        with pytest.raises(ToolError) as exc_info:
            await EditFileTool().execute(
                {"file_path": "a.py", "old_string": "y", "new_string": "z"}, ctx
            )
        assert exc_info.value.code == "NO_MATCH"


class TestSearchTools:
    @pytest.fixture()
    def project(self, tmp_path: Path) -> Path:
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "app.py").write_text("import os\n\ndef main():\n    pass\n")
        (tmp_path / "src" / "util.py").write_text("def helper():\n    return 'main'\n")
        (tmp_path / "README.md").write_text("# demo\n")
        (tmp_path / "node_modules").mkdir()
        (tmp_path / "node_modules" / "dep.py").write_text("def main(): ...\n")
        return tmp_path

    @pytest.mark.asyncio
    async def test_ls_dirs_first_and_ignored(self, project, ctx):
        out = await ListDirTool().execute({}, ctx)
        assert out.splitlines() == ["src/", "README.md"]

    @pytest.mark.asyncio
    async def test_ls_not_a_directory(self, project, ctx):
        with pytest.raises(ToolError):
            await ListDirTool().execute({"path": "README.md"}, ctx)

    @pytest.mark.asyncio
    async def test_glob_skips_ignored_dirs(self, project, ctx):
        out = await GlobTool().execute({"pattern": "**/*.py"}, ctx)
        assert sorted(out.splitlines()) == ["src/app.py", "src/util.py"]

    @pytest.mark.asyncio
    async def test_glob_no_match(self, project, ctx):
        assert await GlobTool().execute({"pattern": "*.rs"}, ctx) == "No files found"

    @pytest.mark.asyncio
    async def test_grep_reports_path_and_line(self, project, ctx):
        out = await GrepTool().execute({"pattern": r"def main"}, ctx)
        assert out == "src/app.py:3: def main():"

    @pytest.mark.asyncio
    async def test_grep_include_filter(self, project, ctx):
        out = await GrepTool().execute({"pattern": "demo", "include": "*.py"}, ctx)
        assert out == "No matches found"

    @pytest.mark.asyncio
    async def test_grep_invalid_regex(self, project, ctx):
        with pytest.raises(ToolError) as exc_info:
            await GrepTool().execute({"pattern": "("}, ctx)
        assert exc_info.value.code == "INVALID_ARGS"


class TestBash:
    @pytest.mark.asyncio
    async def test_runs_in_project_root(self, tmp_path, ctx):
        (tmp_path / "marker.txt").write_text("")
        result = await BashTool().execute({"command": "ls"}, ctx)
        assert result["exit_code"] == 0
        assert "marker.txt" in result["output"]

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_reported(self, ctx):
        result = await BashTool().execute({"command": "echo oops >&2; exit 3"}, ctx)
        assert result == {"exit_code": 3, "output": "oops\n"}


class TestTodoTools:
    @pytest.mark.asyncio
    async def test_write_then_read(self, ctx):
        store = TodoStore()
        await TodoWriteTool(store).execute(
            {
                "todos": [
                    {"content": "parse", "status": "in_progress", "priority": "high"},
                    {"content": "test"},
                ]
            },
            ctx,
        )
        result = await TodoReadTool(store).execute({}, ctx)

        assert [t["content"] for t in result["todos"]] == ["parse", "test"]
        assert result["todos"][1]["status"] == "pending"
        assert result["counts"] == {"total": 2, "pending": 1, "in_progress": 1, "completed": 0}

    @pytest.mark.asyncio
    async def test_only_one_in_progress(self, ctx):
        with pytest.raises(ToolError):
            await TodoWriteTool(TodoStore()).execute(
                {
                    "todos": [
                        {"content": "a", "status": "in_progress"},
                        {"content": "b", "status": "in_progress"},
                    ]
                },
                ctx,
            )

    @pytest.mark.asyncio
    async def test_empty_list_message(self, ctx):
        result = await TodoReadTool(TodoStore()).execute({}, ctx)
        assert result["todos"] == []
        assert "No todos" in result["message"]

    def test_lists_are_per_session(self):
        store = TodoStore()
        store.replace("a", [{"content": "x"}])
        assert store.get("b") == []
        store.clear("a")
        assert store.get("a") == []


class TestRegistration:
    def test_all_builtins_registered(self):
        registry = ToolRegistry()
        register_builtins(
            registry,
            todos=TodoStore(),
            approvals=PendingApprovalStore(),
            plan=PlanModeMachine(),
        )
        assert set(registry.names()) == {
            "read",
            "write",
            "edit",
            "ls",
            "glob",
            "grep",
            "bash",
            "todoread",
            "todowrite",
            "question",
            "plan_enter",
            "plan_exit",
            "task",
        }

    def test_plan_mode_is_read_only(self):
        registry = ToolRegistry()
        register_builtins(
            registry,
            todos=TodoStore(),
            approvals=PendingApprovalStore(),
            plan=PlanModeMachine(),
        )
        plan_tools = set(registry.for_mode(AgentMode.plan).names())
        assert not {"write", "edit", "bash"} & plan_tools
