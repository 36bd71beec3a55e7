"""Unit tests for the iteration orchestrator and the worker surface."""
from __future__ import annotations

import unittest

from fakes import EchoTool, ScriptedProvider, call, text, usage

from src.agent_rounds.control import ABORT, CONTINUE, ControlSignal
from src.agent_rounds.executor import SingleRoundExecutor
from src.agent_rounds.models import (
    AgentMessage,
    ChoiceMessage,
    ExecutionParameters,
    SummaryMessage,
    SummaryMetadata,
    ToolMessage,
    TrustLevel,
    UserChoiceMessage,
    UserChoiceMetadata,
    UserInputMessage,
    UserInputMetadata,
    UserMessage,
)
from src.agent_rounds.orchestrator import IterationOrchestrator, frame_prompt
from src.agent_rounds.permissions import PERMISSION_CHOICES
from src.agent_rounds.settings_store import InMemorySettingsStore
from src.agent_rounds.tools import Toolbox
from src.agent_rounds.worker import AgentWorker


def start_params() -> ExecutionParameters:
    return ExecutionParameters(prompt="base", messages=[UserMessage(id="u0", content="start", sender="user")])


def orchestrator(provider: ScriptedProvider, *tools, max_iterations: int = 25) -> IterationOrchestrator:
    return IterationOrchestrator(SingleRoundExecutor("agent", provider, Toolbox(list(tools))), max_iterations)


class TestFramePrompt(unittest.TestCase):
    def test_states_iteration(self) -> None:
        framed = frame_prompt("base", 2, 5)
        self.assertTrue(framed.startswith("base"))
        self.assertIn("iteration 2 of 5", framed)
        self.assertNotIn("FINAL ITERATION", framed)

    def test_final_iteration_directive(self) -> None:
        self.assertIn("FINAL ITERATION", frame_prompt("base", 5, 5))
        self.assertIn("last chance", frame_prompt("base", 1, 1))


class TestIterationOrchestrator(unittest.IsolatedAsyncioTestCase):
    async def test_stops_after_silent_round(self) -> None:
        provider = ScriptedProvider([text("first")], [text("second")], [])
        result = await orchestrator(provider).run(start_params(), max_iterations=10).run_to_completion()
        self.assertEqual(len(provider.calls), 3)
        self.assertEqual([m.content for m in result.messages], ["first", "second"])
        self.assertFalse(result.aborted)

    async def test_respects_max_iterations(self) -> None:
        provider = ScriptedProvider(*[[text(f"r{i}")] for i in range(10)])
        result = await orchestrator(provider).run(start_params(), max_iterations=3).run_to_completion()
        self.assertEqual(len(provider.calls), 3)
        self.assertEqual(len(result.messages), 3)
        self.assertIn("FINAL ITERATION", provider.calls[-1]["prompt"])
        self.assertNotIn("FINAL ITERATION", provider.calls[0]["prompt"])

    async def test_single_silent_round(self) -> None:
        provider = ScriptedProvider([])
        result = await orchestrator(provider).run(start_params(), max_iterations=1).run_to_completion()
        self.assertEqual(len(provider.calls), 1)
        self.assertEqual(result.messages, [])
        self.assertFalse(result.aborted)

    async def test_usage_is_summed(self) -> None:
        tool = EchoTool()
        provider = ScriptedProvider(
            [text("a"), call(0, "echo", {"text": "x"}), usage(10, 1)],
            [text("b"), usage(20, 2)],
            [usage(30, 0)],
        )
        result = await orchestrator(provider, tool).run(start_params()).run_to_completion()
        self.assertEqual(result.usage.input_tokens, 60)
        self.assertEqual(result.usage.output_tokens, 3)
        self.assertEqual(result.usage.tools_used, 1)

    async def test_round_history_accumulates(self) -> None:
        tool = EchoTool()
        provider = ScriptedProvider([text("thinking"), call(0, "echo", {"text": "pong"})], [text("done")])
        await orchestrator(provider, tool).run(start_params(), max_iterations=2).run_to_completion()
        second = provider.calls[1]["history"]
        self.assertEqual(second[0].id, "u0")
        self.assertIsInstance(second[1], AgentMessage)
        self.assertIsInstance(second[2], ToolMessage)
        self.assertEqual(second[2].content, "pong")

    async def test_input_history_is_not_mutated(self) -> None:
        params = start_params()
        provider = ScriptedProvider([text("x")])
        await orchestrator(provider).run(params).run_to_completion()
        self.assertEqual([m.id for m in params.messages], ["u0"])

    async def test_replacement_history_keeps_round_output(self) -> None:
        summary = SummaryMessage(
            id="s1", content="summary", sender="summarizer", metadata=SummaryMetadata(message_count=2)
        )

        async def respond(message):
            return ControlSignal.replace_history([summary])

        provider = ScriptedProvider([text("long answer")], [text("short")])
        await orchestrator(provider).run(start_params(), max_iterations=2).run_to_completion(respond)
        self.assertEqual([m.type for m in provider.calls[1]["history"]], ["summary", "agent"])
        self.assertEqual(provider.calls[1]["history"][1].content, "long answer")

    async def test_queued_messages_are_appended(self) -> None:
        extra = UserMessage(id="q1", content="also this", sender="user")

        async def respond(message):
            return ControlSignal.queue([extra])

        provider = ScriptedProvider([text("one")], [text("two")])
        await orchestrator(provider).run(start_params(), max_iterations=2).run_to_completion(respond)
        history = provider.calls[1]["history"]
        self.assertEqual(history[0].id, "u0")
        self.assertEqual(history[1].id, "q1")
        self.assertIsInstance(history[2], AgentMessage)
        self.assertEqual(len(history), 3)

    async def test_replacement_wins_over_queued(self) -> None:
        extra = UserMessage(id="q1", content="queued", sender="user")
        replacement = UserMessage(id="r1", content="fresh start", sender="user")
        controls = [ControlSignal.queue([extra]), ControlSignal(replacement_history=(replacement,))]

        async def respond(message):
            return controls.pop(0) if controls else CONTINUE

        provider = ScriptedProvider([text("a"), text("b")], [text("c")])
        await orchestrator(provider).run(start_params(), max_iterations=2).run_to_completion(respond)
        history = provider.calls[1]["history"]
        self.assertEqual(history[0].id, "r1")
        self.assertEqual([m.content for m in history[1:]], ["ab"])

    async def test_mutations_apply_once(self) -> None:
        extra = UserMessage(id="q1", content="once", sender="user")
        sent = []

        async def respond(message):
            if sent:
                return CONTINUE
            sent.append(message)
            return ControlSignal.queue([extra])

        provider = ScriptedProvider([text("a")], [text("b")], [text("c")])
        await orchestrator(provider).run(start_params(), max_iterations=3).run_to_completion(respond)
        third = provider.calls[2]["history"]
        self.assertEqual([m.id for m in third].count("q1"), 1)

    async def test_user_input_response_becomes_user_message(self) -> None:
        reply = UserInputMessage(
            id="in1",
            sender="user",
            metadata=UserInputMetadata(prompt="Which file?", input="notes.txt"),
        )

        async def respond(message):
            return ControlSignal.respond(reply)

        provider = ScriptedProvider([text("which?")], [text("ok")])
        await orchestrator(provider).run(start_params(), max_iterations=2).run_to_completion(respond)
        last = provider.calls[1]["history"][-1]
        self.assertIsInstance(last, UserMessage)
        self.assertEqual(last.content, "notes.txt")

    async def test_abort_stops_the_run(self) -> None:
        provider = ScriptedProvider([text("a"), text("b")], [text("never")])
        execution = orchestrator(provider).run(start_params())
        step = await execution.resume(CONTINUE)
        step = await execution.resume(ABORT)
        self.assertTrue(step.result.aborted)
        self.assertEqual([m.content for m in step.result.messages], ["a"])
        self.assertEqual(len(provider.calls), 1)

    async def test_invalid_max_iterations(self) -> None:
        with self.assertRaises(ValueError):
            orchestrator(ScriptedProvider(), max_iterations=0)
        with self.assertRaises(ValueError):
            orchestrator(ScriptedProvider()).run(start_params(), max_iterations=0)

    async def test_replacement_before_tool_result_keeps_the_result(self) -> None:
        summary = SummaryMessage(id="s1", content="sum", sender="summarizer", metadata=SummaryMetadata(message_count=1))
        controls = [ControlSignal.replace_history([summary])]

        async def respond(message):
            return controls.pop(0) if controls else CONTINUE

        provider = ScriptedProvider([text("a"), call(0, "echo", {"text": "pong"})], [text("b")])
        await orchestrator(provider, EchoTool()).run(start_params(), max_iterations=2).run_to_completion(respond)
        history = provider.calls[1]["history"]
        self.assertEqual([m.type for m in history], ["summary", "agent", "tool"])
        self.assertEqual(history[2].content, "pong")

    async def test_persistent_backend_failure_stops_the_run(self) -> None:
        provider = ScriptedProvider(*[[RuntimeError("401 bad key")] for _ in range(5)])
        result = await orchestrator(provider).run(start_params()).run_to_completion()
        self.assertEqual(len(provider.calls), 1)
        self.assertEqual([m.type for m in result.messages], ["error"])
        self.assertFalse(result.aborted)

    async def test_backend_failure_after_text_continues(self) -> None:
        provider = ScriptedProvider([text("half"), RuntimeError("reset")], [text("whole")])
        result = await orchestrator(provider).run(start_params(), max_iterations=3).run_to_completion()
        self.assertEqual(len(provider.calls), 3)
        self.assertEqual([m.type for m in result.messages], ["agent", "error", "agent"])


class TestAgentWorker(unittest.IsolatedAsyncioTestCase):
    async def test_always_allow_carries_across_rounds(self) -> None:
        tool = EchoTool("guarded", TrustLevel.LOOSE)
        store = InMemorySettingsStore()
        provider = ScriptedProvider(
            [call(0, "guarded", {"text": "1"})],
            [call(0, "guarded", {"text": "2"})],
            [text("finished")],
        )
        worker = AgentWorker("agent", provider, Toolbox([tool]), store)
        prompts = []

        async def respond(message):
            if isinstance(message, ChoiceMessage):
                prompts.append(message)
                return ControlSignal.respond(
                    UserChoiceMessage(
                        id="pick",
                        sender="user",
                        metadata=UserChoiceMetadata(choice=1, choices=list(PERMISSION_CHOICES)),
                    )
                )
            return CONTINUE

        result = await worker.run_iterations(start_params(), max_iterations=5).run_to_completion(respond)
        self.assertEqual(len(prompts), 1)
        self.assertEqual(result.usage.tools_used, 2)
        self.assertEqual(tool.executed, [{"text": "1"}, {"text": "2"}])
        self.assertEqual(result.messages[-1].content, "finished")

    async def test_single_round(self) -> None:
        worker = AgentWorker("agent", ScriptedProvider([text("hello")], [text("unused")]))
        result = await worker.run_single_round(start_params()).run_to_completion()
        self.assertEqual([m.content for m in result.messages], ["hello"])


if __name__ == "__main__":
    unittest.main()
