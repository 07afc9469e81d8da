import asyncio
import unittest

from db_chat_agent.errors import PermissionGateBusyError
from db_chat_agent.permission_gate import GateState, PermissionGate
from tests.fakes import wait_until


class PermissionGateTests(unittest.TestCase):
    def test_accept_resolves_the_waiting_request(self) -> None:
        transitions: list[GateState] = []
        gate = PermissionGate(on_state_change=lambda state, pending: transitions.append(state))

        async def scenario():
            waiter = asyncio.create_task(gate.request("c1", "run_query", {"sql": "select 1"}))
            await wait_until(lambda: gate.is_awaiting)
            self.assertEqual("c1", gate.pending.call_id)
            self.assertTrue(gate.accept())
            return await waiter

        decision = asyncio.run(scenario())

        self.assertTrue(decision.approved)
        self.assertEqual("c1", decision.call_id)
        self.assertEqual(GateState.IDLE, gate.state)
        self.assertIsNone(gate.pending)
        self.assertEqual([GateState.AWAITING_DECISION, GateState.RESOLVED, GateState.IDLE], transitions)

    def test_reject_stores_followup_once(self) -> None:
        gate = PermissionGate()

        async def scenario():
            waiter = asyncio.create_task(gate.request("c1", "run_query", {}))
            await wait_until(lambda: gate.is_awaiting)
            gate.reject("use a view instead")
            return await waiter

        decision = asyncio.run(scenario())

        self.assertFalse(decision.approved)
        self.assertEqual("use a view instead", decision.followup)
        self.assertEqual("use a view instead", gate.take_followup())
        self.assertIsNone(gate.take_followup())

    def test_decisions_while_idle_are_ignored(self) -> None:
        gate = PermissionGate()
        self.assertFalse(gate.accept())
        self.assertFalse(gate.reject("x"))
        self.assertIsNone(gate.take_followup())
        self.assertEqual(GateState.IDLE, gate.state)

    def test_only_the_first_decision_counts(self) -> None:
        gate = PermissionGate()

        async def scenario():
            waiter = asyncio.create_task(gate.request("c1", "run_query", {}))
            await wait_until(lambda: gate.is_awaiting)
            first = gate.accept()
            second = gate.reject("too late")
            decision = await waiter
            return first, second, decision

        first, second, decision = asyncio.run(scenario())

        self.assertTrue(first)
        self.assertFalse(second)
        self.assertTrue(decision.approved)
        self.assertIsNone(gate.take_followup())

    def test_second_request_while_pending_is_refused(self) -> None:
        gate = PermissionGate()

        async def scenario():
            waiter = asyncio.create_task(gate.request("c1", "run_query", {}))
            await wait_until(lambda: gate.is_awaiting)
            with self.assertRaises(PermissionGateBusyError):
                await gate.request("c2", "run_query", {})
            gate.accept()
            await waiter

        asyncio.run(scenario())

    def test_cancel_releases_the_waiter(self) -> None:
        gate = PermissionGate()

        async def scenario():
            waiter = asyncio.create_task(gate.request("c1", "run_query", {}))
            await wait_until(lambda: gate.is_awaiting)
            gate.cancel()
            with self.assertRaises(asyncio.CancelledError):
                await waiter

        asyncio.run(scenario())

        self.assertEqual(GateState.IDLE, gate.state)
        self.assertFalse(gate.accept())

    def test_gate_is_reusable(self) -> None:
        gate = PermissionGate()

        async def scenario():
            results = []
            for call_id in ("c1", "c2"):
                waiter = asyncio.create_task(gate.request(call_id, "run_query", {}))
                await wait_until(lambda: gate.is_awaiting)
                gate.accept()
                results.append((await waiter).call_id)
            return results

        self.assertEqual(["c1", "c2"], asyncio.run(scenario()))


if __name__ == "__main__":
    unittest.main()
