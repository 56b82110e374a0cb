import asyncio
from typing import Any, Dict, List, Optional, Tuple

import pytest

from pair_app.services.session_registry import SessionRegistry
from pair_app.services.whatsapp_bridge import WhatsAppBridge


class FakeBridge(WhatsAppBridge):
    """WhatsAppBridge with the HTTP layer replaced by scripted replies"""

    def __init__(self):
        super().__init__(base_url="http://bridge.test")
        self.calls: List[Tuple[str, Optional[Dict[str, Any]]]] = []
        self.open_results: List[Dict[str, Any]] = []
        self.pairing_results: List[Any] = []

    async def _post(self, path, payload=None, timeout=30.0):
        self.calls.append((path, payload))
        if path.endswith("/open"):
            result = self.open_results.pop(0) if self.open_results else {"success": True}
            if isinstance(result, Exception):
                raise result
            return result
        if path.endswith("/pairing-code"):
            result = self.pairing_results.pop(0) if self.pairing_results else {"success": True, "code": "ABCDEFGH"}
            if isinstance(result, Exception):
                raise result
            return result
        return {"success": True}

    def calls_to(self, suffix: str) -> List[Tuple[str, Optional[Dict[str, Any]]]]:
        return [c for c in self.calls if c[0].endswith(suffix)]

    def emit(self, session_id: str, **data) -> bool:
        data["sessionId"] = session_id
        return self.dispatch(session_id, data)


async def wait_until(predicate, timeout: float = 2.0):
    """Poll until predicate() is true; archive I/O runs in threads so events need real time"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class FakeSleep:
    """Records requested delays instead of sleeping"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float):
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def bridge():
    return FakeBridge()


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def registry(tmp_path):
    return SessionRegistry(base_dir=tmp_path / "session")
