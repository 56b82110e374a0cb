"""
Test Pairing Orchestrator

Retry bound, delays between attempts, code formatting and readiness policy.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from pair_app.core.exceptions import BridgeError, ConnectionClosed, PairingExhausted
from pair_app.services.pairing import PairingOrchestrator, format_pairing_code


def make_supervisor(side_effect=None, return_value=None):
    supervisor = MagicMock()
    supervisor.session_id = "session-1-12345678"
    supervisor.wait_ready = AsyncMock()
    supervisor.request_pairing_code = AsyncMock(side_effect=side_effect, return_value=return_value)
    return supervisor


class TestFormatPairingCode:
    def test_even_groups(self):
        assert format_pairing_code("ABCDEFGH") == "ABCD-EFGH"

    def test_short_final_group(self):
        assert format_pairing_code("ABCDEFG") == "ABCD-EFG"

    def test_shorter_than_group(self):
        assert format_pairing_code("ABC") == "ABC"

    def test_empty(self):
        assert format_pairing_code("") == ""

    def test_custom_separator(self):
        assert format_pairing_code("ABCDEF", group_size=3, separator=" ") == "ABC DEF"


class TestRequestPairingCode:
    @pytest.mark.asyncio
    async def test_success_first_attempt(self, fake_sleep):
        supervisor = make_supervisor(return_value="ABCDEFGH")
        orchestrator = PairingOrchestrator(attempts=3, retry_delay=2.0, sleep=fake_sleep)

        code = await orchestrator.request_pairing_code(supervisor, "+1 555-1234")

        assert code == "ABCD-EFGH"
        supervisor.request_pairing_code.assert_awaited_once_with("15551234")
        assert fake_sleep.delays == []

    @pytest.mark.asyncio
    async def test_always_failing_exhausts_after_three(self, fake_sleep):
        supervisor = make_supervisor(side_effect=BridgeError("boom"))
        orchestrator = PairingOrchestrator(attempts=3, retry_delay=2.0, sleep=fake_sleep)

        with pytest.raises(PairingExhausted) as exc_info:
            await orchestrator.request_pairing_code(supervisor, "15551234")

        assert supervisor.request_pairing_code.await_count == 3
        assert fake_sleep.delays == [2.0, 2.0]
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, BridgeError)

    @pytest.mark.asyncio
    async def test_recovers_on_second_attempt(self, fake_sleep):
        supervisor = make_supervisor(side_effect=[BridgeError("not yet"), "WXYZ1234"])
        orchestrator = PairingOrchestrator(attempts=3, retry_delay=2.0, sleep=fake_sleep)

        code = await orchestrator.request_pairing_code(supervisor, "15551234")

        assert code == "WXYZ-1234"
        assert fake_sleep.delays == [2.0]

    @pytest.mark.asyncio
    async def test_empty_code_counts_as_failure(self, fake_sleep):
        supervisor = make_supervisor(side_effect=["", None, "ABCDEFG"])
        orchestrator = PairingOrchestrator(attempts=3, retry_delay=2.0, sleep=fake_sleep)

        code = await orchestrator.request_pairing_code(supervisor, "15551234")

        assert code == "ABCD-EFG"
        assert supervisor.request_pairing_code.await_count == 3

    @pytest.mark.asyncio
    async def test_waits_for_ready_first(self, fake_sleep):
        supervisor = make_supervisor(return_value="ABCDEFGH")
        orchestrator = PairingOrchestrator(ready_timeout=5.0, sleep=fake_sleep)

        await orchestrator.request_pairing_code(supervisor, "15551234")

        supervisor.wait_ready.assert_awaited_once_with(5.0)

    @pytest.mark.asyncio
    async def test_ready_timeout_still_attempts(self, fake_sleep):
        supervisor = make_supervisor(return_value="ABCDEFGH")
        supervisor.wait_ready.side_effect = asyncio.TimeoutError()
        orchestrator = PairingOrchestrator(sleep=fake_sleep)

        assert await orchestrator.request_pairing_code(supervisor, "15551234") == "ABCD-EFGH"

    @pytest.mark.asyncio
    async def test_stopped_supervisor_exhausts(self, fake_sleep):
        supervisor = make_supervisor(side_effect=BridgeError("No active connection"))
        supervisor.wait_ready.side_effect = ConnectionClosed(None, terminal=True)
        orchestrator = PairingOrchestrator(attempts=2, retry_delay=0.5, sleep=fake_sleep)

        with pytest.raises(PairingExhausted):
            await orchestrator.request_pairing_code(supervisor, "15551234")

        assert fake_sleep.delays == [0.5]
