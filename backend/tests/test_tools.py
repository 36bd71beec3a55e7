"""Unit tests for the toolbox and built-in tools."""
from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from fakes import EchoTool

from src.agent_rounds.control import ABORT, CONTINUE
from src.agent_rounds.models import (
    ErrorMessage,
    FileOperationMessage,
    ToolInvocationRequest,
    ToolMessage,
    TrustLevel,
)
from src.agent_rounds.tools import (
    GetTimeTool,
    ReadFileTool,
    Toolbox,
    WriteFileTool,
    get_default_tools,
    line_diffs,
)


class TestLineDiffs(unittest.TestCase):
    def test_new_file_is_all_added(self) -> None:
        diffs = line_diffs("", "a\nb")
        self.assertEqual([(d.line_number, d.type) for d in diffs], [(1, "added"), (2, "added")])

    def test_modified_line(self) -> None:
        diffs = line_diffs("a\nb\nc", "a\nB\nc")
        self.assertEqual([d.type for d in diffs], ["unchanged", "modified", "unchanged"])
        self.assertEqual((diffs[1].old_text, diffs[1].new_text), ("b", "B"))

    def test_removed_line(self) -> None:
        diffs = line_diffs("a\nb\nc", "a\nc")
        removed = [d for d in diffs if d.type == "removed"]
        self.assertEqual(len(removed), 1)
        self.assertEqual(removed[0].old_text, "b")


class TestToolbox(unittest.IsolatedAsyncioTestCase):
    async def test_call_yields_tool_message_and_counts_usage(self) -> None:
        toolbox = Toolbox([EchoTool()])
        execution = toolbox.call(ToolInvocationRequest(name="echo", parameters={"text": "hey"}))
        step = await execution.resume(CONTINUE)
        self.assertIsInstance(step.message, ToolMessage)
        self.assertEqual(step.message.content, "hey")
        self.assertEqual(step.message.metadata.parameters, {"text": "hey"})
        step = await execution.resume(CONTINUE)
        self.assertEqual(step.result.usage.tools_used, 1)

    async def test_abort_before_start_runs_nothing(self) -> None:
        tool = EchoTool()
        step = await Toolbox([tool]).call(ToolInvocationRequest(name="echo")).resume(ABORT)
        self.assertTrue(step.result.aborted)
        self.assertEqual(tool.executed, [])

    async def test_unknown_tool(self) -> None:
        result = await Toolbox().call(ToolInvocationRequest(name="nope")).run_to_completion()
        self.assertIsInstance(result.messages[0], ErrorMessage)
        self.assertEqual(result.usage.tools_used, 0)

    def test_definitions_carry_trust_level(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            definitions = {d.name: d for d in Toolbox(get_default_tools(Path(tmp))).definitions}
        self.assertEqual(definitions["get_time"].trust_level, TrustLevel.NONE)
        self.assertEqual(definitions["read_file"].trust_level, TrustLevel.LOOSE)
        self.assertEqual(definitions["write_file"].trust_level, TrustLevel.STRICT)


class TestBuiltinTools(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    async def test_get_time(self) -> None:
        result = await GetTimeTool().execute({})
        self.assertTrue(result.success)
        self.assertIn("T", result.content)

    async def test_read_file(self) -> None:
        (self.root / "notes.txt").write_text("hello", encoding="utf-8")
        result = await ReadFileTool(self.root).execute({"path": "notes.txt"})
        self.assertTrue(result.success)
        self.assertEqual(result.content, "hello")

    async def test_read_missing_file(self) -> None:
        result = await ReadFileTool(self.root).execute({"path": "missing.txt"})
        self.assertFalse(result.success)

    async def test_path_escape_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            await ReadFileTool(self.root).execute({"path": "../outside.txt"})

    async def test_write_file_emits_file_operation(self) -> None:
        (self.root / "doc.txt").write_text("one\ntwo\n", encoding="utf-8")
        toolbox = Toolbox([WriteFileTool(self.root)])
        result = await toolbox.call(
            ToolInvocationRequest(name="write_file", parameters={"path": "doc.txt", "content": "one\n2\n"})
        ).run_to_completion()
        message = result.messages[0]
        self.assertIsInstance(message, FileOperationMessage)
        self.assertEqual(message.metadata.file_path, "doc.txt")
        self.assertEqual([d.type for d in message.metadata.diffs], ["unchanged", "modified"])
        self.assertEqual((self.root / "doc.txt").read_text(encoding="utf-8"), "one\n2\n")

    async def test_write_new_file_in_new_directory(self) -> None:
        result = await WriteFileTool(self.root).execute({"path": "notes/today.txt", "content": "a\nb"})
        self.assertTrue(result.success)
        self.assertEqual([d.type for d in result.metadata["diffs"]], ["added", "added"])
        self.assertEqual((self.root / "notes" / "today.txt").read_text(encoding="utf-8"), "a\nb")

    async def test_write_escape_becomes_error_message(self) -> None:
        toolbox = Toolbox([WriteFileTool(self.root)])
        result = await toolbox.call(
            ToolInvocationRequest(name="write_file", parameters={"path": "../x.txt", "content": "x"})
        ).run_to_completion()
        self.assertIsInstance(result.messages[0], ErrorMessage)
        self.assertEqual(result.usage.tools_used, 1)


if __name__ == "__main__":
    unittest.main()
