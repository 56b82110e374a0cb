import asyncio
import httpx
from dataclasses import dataclass, field
from typing import Optional, Dict, Any

from pair_app.config import settings
from pair_app.core.exceptions import BridgeError
from pair_app.core.log import error_log
from pair_app.services.auth_state import AuthState

CREDS_UPDATE = "creds.update"
CONNECTION_UPDATE = "connection.update"


@dataclass
class BridgeEvent:
    """Credential or connection event published by the bridge for one session"""
    type: str
    creds: Dict[str, Any] = field(default_factory=dict)
    keys: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    connection: Optional[str] = None  # connecting, open, close
    qr: Optional[str] = None
    status_code: Optional[int] = None
    reason: Optional[str] = None

    @classmethod
    def from_bridge(cls, data: Dict[str, Any]) -> "BridgeEvent":
        status_code = data.get("statusCode")
        return cls(
            type=data.get("type", ""),
            creds=data.get("creds") or {},
            keys=data.get("keys") or {},
            connection=data.get("connection"),
            qr=data.get("qr"),
            status_code=int(status_code) if status_code is not None else None,
            reason=data.get("reason")
        )


class BridgeConnection:
    """One open socket on the bridge. Events for it arrive on ``events`` in emission order."""

    def __init__(self, bridge: "WhatsAppBridge", session_id: str):
        self.bridge = bridge
        self.session_id = session_id
        self.events: "asyncio.Queue[BridgeEvent]" = asyncio.Queue()
        self.closed = False

    async def request_pairing_code(self, phone_number: str) -> str:
        result = await self.bridge.request_pairing_code(self.session_id, phone_number)
        if not result.get("success"):
            raise BridgeError(result.get("error") or "Pairing code request failed")
        return result.get("code") or ""

    def detach(self):
        """Stop routing events here; the bridge already dropped the socket"""
        self.closed = True
        self.bridge.unregister(self)

    async def close(self):
        if self.closed:
            return
        self.detach()
        result = await self.bridge.close_session(self.session_id)
        if not result.get("success"):
            error_log("BRIDGE", f"Close failed for {self.session_id}: {result.get('error')}")


class WhatsAppBridge:
    """Bridge to the Node.js Baileys service that owns the actual WhatsApp sockets"""

    def __init__(self, base_url: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url or settings.whatsapp_bridge_url
        self.transport = transport
        self.connections: Dict[str, BridgeConnection] = {}

    def socket_config(self) -> Dict[str, Any]:
        return {
            "connectTimeoutMs": int(settings.connect_timeout * 1000),
            "defaultQueryTimeoutMs": (
                int(settings.default_query_timeout * 1000)
                if settings.default_query_timeout is not None else None
            ),
            "keepAliveIntervalMs": int(settings.keepalive_interval * 1000),
            "browser": list(settings.browser),
            "emitOwnEvents": True,
            "fireInitQueries": True,
            "generateHighQualityLinkPreview": True,
            "syncFullHistory": True,
            "markOnlineOnConnect": True,
            "printQRInTerminal": False
        }

    async def _post(self, path: str, payload: Optional[Dict[str, Any]] = None,
                    timeout: float = 30.0) -> Dict[str, Any]:
        async with httpx.AsyncClient(transport=self.transport) as client:
            try:
                response = await client.post(
                    f"{self.base_url}{path}",
                    json=payload or {},
                    timeout=timeout
                )
            except httpx.ReadTimeout:
                return {"success": False, "error": "Request timed out - WhatsApp bridge is busy"}
            except httpx.RequestError as e:
                return {"success": False, "error": str(e)}

        try:
            data = response.json()
        except ValueError:
            data = None

        if not isinstance(data, dict):
            return {"success": False, "error": f"Invalid response from bridge ({response.status_code})"}
        return data

    async def open_connection(self, session_id: str, auth_state: AuthState) -> BridgeConnection:
        """Open a socket for ``session_id`` with the stored credentials"""
        connection = BridgeConnection(self, session_id)
        # Registered before the open call so no early event is lost
        self.connections[session_id] = connection

        try:
            result = await self._post(
                f"/api/sessions/{session_id}/open",
                {"auth": auth_state.to_payload(), "config": self.socket_config()},
                timeout=settings.connect_timeout
            )
        except Exception:
            self.unregister(connection)
            raise
        if not result.get("success"):
            self.unregister(connection)
            raise BridgeError(result.get("error") or f"Could not open connection for {session_id}")
        return connection

    async def request_pairing_code(self, session_id: str, phone_number: str) -> Dict[str, Any]:
        return await self._post(
            f"/api/sessions/{session_id}/pairing-code",
            {"phoneNumber": phone_number},
            timeout=settings.pairing_request_timeout
        )

    async def close_session(self, session_id: str) -> Dict[str, Any]:
        return await self._post(f"/api/sessions/{session_id}/close")

    def unregister(self, connection: BridgeConnection):
        if self.connections.get(connection.session_id) is connection:
            del self.connections[connection.session_id]

    def dispatch(self, session_id: str, data: Dict[str, Any]) -> bool:
        """Route one published event to its session's queue. Returns False if nobody listens."""
        connection = self.connections.get(session_id)
        if connection is None:
            return False
        connection.events.put_nowait(BridgeEvent.from_bridge(data))
        return True


# Singleton instance
whatsapp_bridge = WhatsAppBridge()
