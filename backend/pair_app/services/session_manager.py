import asyncio
from typing import Any, Dict, Optional, Tuple

from pair_app.config import settings
from pair_app.core.exceptions import SessionNotFound
from pair_app.core.log import log, error_log
from pair_app.models.session import Session
from pair_app.services.auth_state import parse_session_string, seed_creds
from pair_app.services.pairing import PairingOrchestrator
from pair_app.services.session_registry import SessionRegistry, sanitize_phone
from pair_app.services.supervisor import ConnectionSupervisor, WhatsAppClient
from pair_app.services.whatsapp_bridge import whatsapp_bridge


class SessionManager:
    """Owns one supervisor per live session"""

    def __init__(
        self,
        registry: Optional[SessionRegistry] = None,
        client: Optional[WhatsAppClient] = None,
        orchestrator: Optional[PairingOrchestrator] = None,
        supervisor_factory=ConnectionSupervisor
    ):
        self.registry = registry or SessionRegistry()
        self.client = client or whatsapp_bridge
        self.orchestrator = orchestrator or PairingOrchestrator()
        self.supervisor_factory = supervisor_factory
        self.supervisors: Dict[str, ConnectionSupervisor] = {}
        self._background: set = set()

    async def start_session(self, session: Session) -> ConnectionSupervisor:
        supervisor = self.supervisors.get(session.session_id)
        if supervisor is not None and supervisor.running:
            return supervisor

        supervisor = self.supervisor_factory(session, self.client)
        self.supervisors[session.session_id] = supervisor
        await supervisor.start()
        if supervisor.task is not None:
            supervisor.task.add_done_callback(lambda _task: self._forget(supervisor))
        return supervisor

    def _forget(self, supervisor: ConnectionSupervisor):
        """Drop the in-memory records of a supervisor that ended on its own (logout)"""
        session_id = supervisor.session_id
        if self.supervisors.get(session_id) is not supervisor:
            return
        del self.supervisors[session_id]
        self.registry.release(session_id)
        log("SESSION", f"Session {session_id} released")

    async def pair(self, phone_number: str) -> Tuple[Session, str]:
        """Allocate a new session for ``phone_number`` and return it with its pairing code"""
        session = self.registry.allocate(phone_number)
        supervisor = await self.start_session(session)
        # On failure the supervisor keeps running; the caller may still pair later
        code = await self.orchestrator.request_pairing_code(supervisor, phone_number)
        return session, code

    async def start_default_session(self) -> ConnectionSupervisor:
        """Start the standing session that lives for the whole process"""
        session = self.registry.ensure(settings.default_session_id)

        if settings.session_string:
            try:
                creds = parse_session_string(settings.session_string)
                if seed_creds(session.directory_path, creds):
                    log("SESSION", f"Restored credentials for {session.session_id} from session string")
            except ValueError as e:
                error_log("SESSION", f"Error extracting session ID: {e}")

        supervisor = await self.start_session(session)

        phone = sanitize_phone(settings.phone or "")
        if not session.registered and phone:
            session.phone_number = phone
            task = asyncio.create_task(self._pair_default(supervisor, phone))
            self._background.add(task)
            task.add_done_callback(self._background.discard)
        elif not session.registered:
            log("SESSION", f"Session {session.session_id} is not paired; set PHONE or call /pair")

        return supervisor

    async def _pair_default(self, supervisor: ConnectionSupervisor, phone: str):
        try:
            code = await self.orchestrator.request_pairing_code(supervisor, phone)
            log("SESSION", f"Pairing code: {code}")
        except Exception as e:
            error_log("SESSION", f"Error requesting pairing code: {e}")

    def get_supervisor(self, session_id: str) -> Optional[ConnectionSupervisor]:
        return self.supervisors.get(session_id)

    def status(self, session_id: str) -> Dict[str, Any]:
        session = self.registry.resolve(session_id)
        supervisor = self.supervisors.get(session_id)
        cache = supervisor.cache if supervisor else None
        return {
            "session_id": session.session_id,
            "state": session.connection_state.value,
            "registered": session.registered,
            "phone_number": session.phone_number,
            "archive_ready": session.archive_ready,
            "awaiting_pairing": bool(supervisor and supervisor.awaiting_pairing),
            "last_connected_at": session.last_connected_at,
            "last_disconnect": cache.last_disconnect if cache else None
        }

    async def stop(self, session_id: str):
        """Stop a session's supervisor; its directory and archive stay on disk"""
        supervisor = self.supervisors.pop(session_id, None)
        if supervisor is None:
            raise SessionNotFound(session_id)
        await supervisor.stop()
        self.registry.release(session_id)

    async def shutdown(self):
        for task in list(self._background):
            task.cancel()
        for session_id in list(self.supervisors):
            try:
                await self.stop(session_id)
            except Exception as e:
                error_log("SESSION", f"Error stopping {session_id}: {e}")


session_manager = SessionManager()
