import asyncio
import json
import unittest

from db_chat_agent.errors import ToolExecutionError, UserRejectedError
from db_chat_agent.turn_engine import STEP_LIMIT_MESSAGE, TurnEngine
from tests.fakes import ScriptedProvider, make_gateway, text_response, tool_response


def _make_engine(provider, *, approve: bool = True, max_steps: int = 10):
    gateway, executed = make_gateway()
    messages: list[dict] = [{"role": "user", "content": "go"}]
    order: list[str] = []

    async def approver(name, args, call_id) -> bool:
        order.append(f"approve:{call_id}")
        return approve

    engine = TurnEngine(
        provider=provider,
        model="m",
        max_tokens=100,
        temperature=0.7,
        system_prompt="sys",
        gateway=gateway,
        approver=approver,
        max_steps=max_steps,
        on_append_message=messages.append,
        on_text=lambda text: None,
        on_tool_call_requested=lambda name, args, call_id: order.append(f"request:{call_id}"),
        on_tool_result=lambda call_id, result: order.append(f"result:{call_id}"),
    )
    return engine, messages, executed, order


class TurnEngineTests(unittest.TestCase):
    def test_text_only_turn(self) -> None:
        engine, messages, executed, _ = _make_engine(ScriptedProvider([text_response("hi")]))

        stop_reason = asyncio.run(engine.run(messages=messages))

        self.assertEqual("end_turn", stop_reason)
        self.assertEqual(["user", "assistant"], [m["role"] for m in messages])
        self.assertEqual([], executed)

    def test_calls_run_sequentially_in_request_order(self) -> None:
        provider = ScriptedProvider([
            tool_response(("a", "run_query", {"sql": "1"}), ("b", "run_query", {"sql": "2"})),
            text_response("done"),
        ])
        engine, messages, executed, order = _make_engine(provider)

        asyncio.run(engine.run(messages=messages))

        self.assertEqual(["1", "2"], executed)
        self.assertEqual(
            ["request:a", "approve:a", "result:a", "request:b", "approve:b", "result:b"],
            order,
        )
        self.assertEqual(["user", "assistant", "tool", "tool", "assistant"], [m["role"] for m in messages])

    def test_rejection_raises_with_call_id(self) -> None:
        provider = ScriptedProvider([tool_response(("a", "run_query", {"sql": "1"}))])
        engine, messages, executed, _ = _make_engine(provider, approve=False)

        with self.assertRaises(ToolExecutionError) as ctx:
            asyncio.run(engine.run(messages=messages))

        self.assertEqual("a", ctx.exception.call_id)
        self.assertIsInstance(ctx.exception.cause, UserRejectedError)
        self.assertEqual([], executed)

    def test_step_limit(self) -> None:
        provider = ScriptedProvider([lambda n: tool_response((f"c{n}", "run_query", {"sql": str(n)}))] * 5)
        engine, messages, executed, _ = _make_engine(provider, max_steps=2)

        stop_reason = asyncio.run(engine.run(messages=messages))

        self.assertEqual("step_limit", stop_reason)
        self.assertEqual(3, len(provider.calls))
        self.assertEqual(["1", "2"], executed)
        self.assertEqual({"type": "error", "message": STEP_LIMIT_MESSAGE}, json.loads(messages[-1]["content"]))

    def test_empty_assistant_message_is_not_recorded(self) -> None:
        provider = ScriptedProvider([({"role": "assistant", "content": []}, [], "end_turn")])
        engine, messages, _, _ = _make_engine(provider)

        asyncio.run(engine.run(messages=messages))

        self.assertEqual(1, len(messages))


if __name__ == "__main__":
    unittest.main()
