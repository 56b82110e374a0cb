"""
Test Session Registry

Tests id allocation, collision handling and path resolution.
"""

import itertools
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from pair_app.core.exceptions import AllocationError, SessionNotFound
from pair_app.services.session_registry import SessionRegistry, generate_random_id, sanitize_phone


class TestIdGeneration:
    def test_random_id_is_eight_digits(self):
        for _ in range(100):
            value = generate_random_id()
            assert len(value) == 8
            assert value.isdigit()

    def test_sanitize_phone(self):
        assert sanitize_phone("+1 (862) 520-6066") == "18625206066"
        assert sanitize_phone("") == ""
        assert sanitize_phone(None) == ""


class TestAllocate:
    def test_allocate_creates_directory(self, registry):
        session = registry.allocate("+44 7700 900123")

        assert session.session_id.startswith("session-447700900123-")
        assert session.directory_path.is_dir()
        assert session.archive_path == registry.base_dir / f"{session.session_id}.zip"
        assert not session.archive_path.exists()
        assert session.phone_number == "447700900123"
        assert session.registered is False

    def test_allocate_rerolls_on_live_collision(self, tmp_path):
        ids = iter(["11111111", "11111111", "22222222"])
        registry = SessionRegistry(base_dir=tmp_path, id_factory=lambda: next(ids))

        first = registry.allocate("123")
        second = registry.allocate("123")

        assert first.session_id == "session-123-11111111"
        assert second.session_id == "session-123-22222222"

    def test_allocate_rerolls_on_existing_directory(self, tmp_path):
        (tmp_path / "session-123-11111111").mkdir()
        ids = iter(["11111111", "33333333"])
        registry = SessionRegistry(base_dir=tmp_path, id_factory=lambda: next(ids))

        session = registry.allocate("123")

        assert session.session_id == "session-123-33333333"

    def test_concurrent_allocations_are_unique(self, tmp_path):
        # A tiny id space forces collisions between threads
        counter = itertools.count()
        lock = threading.Lock()

        def small_ids():
            with lock:
                return str(next(counter) % 7 + 10_000_000)

        registry = SessionRegistry(base_dir=tmp_path, id_factory=generate_random_id)
        small_registry = SessionRegistry(base_dir=tmp_path / "small", id_factory=small_ids)

        with ThreadPoolExecutor(max_workers=8) as pool:
            sessions = list(pool.map(lambda _: registry.allocate("15551234"), range(64)))
            small = list(pool.map(lambda _: small_registry.allocate("1"), range(7)))

        assert len({s.session_id for s in sessions}) == 64
        assert len({s.session_id for s in small}) == 7

    def test_allocation_error_when_directory_cannot_be_created(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("x")
        registry = SessionRegistry(base_dir=blocker)

        with pytest.raises(AllocationError):
            registry.allocate("123")

        assert registry.sessions == {}


class TestResolve:
    def test_resolve_live_session(self, registry):
        session = registry.allocate("123")
        assert registry.resolve(session.session_id) is session

    def test_resolve_unknown(self, registry):
        with pytest.raises(SessionNotFound):
            registry.resolve("session-never-paired")

    def test_resolve_rejects_traversal(self, registry):
        with pytest.raises(SessionNotFound):
            registry.resolve("../etc")
        with pytest.raises(SessionNotFound):
            registry.resolve("")

    def test_resolve_from_disk_after_release(self, registry):
        session = registry.allocate("123")
        registry.release(session.session_id)

        resolved = registry.resolve(session.session_id)

        assert resolved is not session
        assert resolved.directory_path == session.directory_path

    def test_ensure_fixed_id(self, registry):
        session = registry.ensure("session")

        assert session.directory_path == registry.base_dir / "session"
        assert session.directory_path.is_dir()
        assert registry.ensure("session") is session

    def test_ensure_rejects_bad_id(self, registry):
        with pytest.raises(AllocationError):
            registry.ensure("../session")
