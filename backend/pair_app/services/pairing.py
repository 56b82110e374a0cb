import asyncio
from typing import Any, Awaitable, Callable, List, Optional

from pair_app.config import settings
from pair_app.core.exceptions import ConnectionClosed, PairingExhausted
from pair_app.core.log import log, error_log
from pair_app.models.session import PairingAttempt
from pair_app.services.session_registry import sanitize_phone


def format_pairing_code(code: str, group_size: int = 4, separator: str = "-") -> str:
    """ABCDEFGH -> ABCD-EFGH; a short final group is kept as is"""
    if not code:
        return code
    groups = [code[i:i + group_size] for i in range(0, len(code), group_size)]
    return separator.join(groups)


class PairingOrchestrator:
    """Drives a supervisor to a pairing code, retrying failed requests"""

    def __init__(
        self,
        attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        ready_timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self.attempts = settings.pairing_attempts if attempts is None else attempts
        self.retry_delay = settings.pairing_retry_delay if retry_delay is None else retry_delay
        self.ready_timeout = settings.connect_timeout if ready_timeout is None else ready_timeout
        self.sleep = sleep

    async def _wait_ready(self, supervisor):
        try:
            await supervisor.wait_ready(self.ready_timeout)
        except asyncio.TimeoutError:
            error_log("PAIR", f"Connection for {supervisor.session_id} not ready after {self.ready_timeout}s, requesting anyway")
        except ConnectionClosed as e:
            error_log("PAIR", f"Connection for {supervisor.session_id} is stopped: {e}")

    async def request_pairing_code(self, supervisor, phone_number: str) -> str:
        """
        Request a pairing code for ``phone_number`` on the supervisor's connection.

        Waits for the connection to be ready first, then makes up to
        ``attempts`` requests with ``retry_delay`` seconds between them.
        Raises PairingExhausted when every attempt fails.
        """
        phone = sanitize_phone(phone_number)
        await self._wait_ready(supervisor)

        history: List[PairingAttempt] = []
        last_error: Optional[Exception] = None

        for attempt_number in range(1, self.attempts + 1):
            attempt = PairingAttempt(phone_number=phone, attempt_number=attempt_number)
            try:
                attempt.result = await supervisor.request_pairing_code(phone)
            except Exception as e:
                attempt.result = e
                last_error = e
                error_log("PAIR", f"Attempt {attempt_number}: Failed to generate pairing code - {e}")
            history.append(attempt)

            if attempt.succeeded:
                code = format_pairing_code(attempt.result)
                log("PAIR", f"Pairing code for {phone}: {code}")
                return code

            if attempt_number < self.attempts:
                await self.sleep(self.retry_delay)

        raise PairingExhausted(len(history), last_error)
