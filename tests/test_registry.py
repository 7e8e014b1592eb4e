import re
import threading

import pytest

from errors import CapacityExhaustedError, NotFoundError
from keygen import KeyGenerator
from registry import SessionRegistry
from scheduler import ExpirationScheduler
from storage import MemoryBlobStore

from conftest import TTL, cycling_keys


def _registry(store, clock, keys):
    return SessionRegistry(store, key_generator=keys, ttl=TTL, scheduler=ExpirationScheduler(clock=clock), clock=clock)


class TestAllocate:
    def test_returns_live_code(self, registry):
        code = registry.allocate("Kindle/3.0")
        assert code in registry
        assert len(registry) == 1

    def test_session_fields(self, registry, clock):
        code = registry.allocate("Kobo")
        session = registry._sessions[code]
        assert session.requester_tag == "Kobo"
        assert session.created_at == clock.now
        assert session.expires_at == clock.now + TTL
        assert session.file_ref is None

    def test_codes_unique_while_live(self, registry):
        codes = [registry.allocate() for _ in range(500)]
        assert len(set(codes)) == 500

    def test_collision_is_retried(self, store, clock):
        registry = _registry(store, clock, cycling_keys("AAAA", "AAAA", "BBBB"))
        assert registry.allocate() == "AAAA"
        assert registry.allocate() == "BBBB"

    def test_exhaustion_two_codes(self, store, clock):
        registry = _registry(store, clock, cycling_keys("A", "B"))
        assert registry.allocate() == "A"
        assert registry.allocate() == "B"
        with pytest.raises(CapacityExhaustedError) as exc_info:
            registry.allocate()
        assert exc_info.value.live == 2
        assert exc_info.value.attempts == 3
        assert len(registry) == 2

    def test_random_generator_never_overfills(self, store, clock):
        registry = _registry(store, clock, KeyGenerator("AB", 1))
        codes = []
        for _ in range(10):
            try:
                codes.append(registry.allocate())
            except CapacityExhaustedError:
                pass
        assert len(codes) == len(set(codes)) <= 2
        assert len(registry) == len(codes)

    def test_schedules_one_expiration(self, registry):
        registry.allocate()
        registry.allocate()
        assert len(registry.scheduler) == 2

    def test_concurrent_allocations_unique(self, registry):
        codes = []
        lock = threading.Lock()

        def worker():
            for _ in range(50):
                code = registry.allocate()
                with lock:
                    codes.append(code)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(codes) == len(set(codes)) == 400
        assert len(registry) == 400


class TestBindResolve:
    def test_bind_visible_to_resolve(self, registry, store):
        code = registry.allocate()
        ref = store.put(b"0123456789", "book.epub", "application/epub+zip")
        registry.bind(code, ref)
        session = registry.resolve(code)
        assert session.file_ref == ref
        assert store.get(session.file_ref.id).data == b"0123456789"

    def test_rebind_replaces_and_releases(self, registry, store):
        code = registry.allocate()
        first = store.put(b"first", "book.epub", "application/epub+zip")
        second = store.put(b"second", "book2.pdf", "application/pdf")
        registry.bind(code, first)
        registry.bind(code, second)

        assert registry.resolve(code).file_ref == second
        with pytest.raises(NotFoundError):
            store.get(first.id)
        assert len(store) == 1

    def test_bind_unknown_code(self, registry, store):
        ref = store.put(b"x", "a.txt", "text/plain")
        with pytest.raises(NotFoundError):
            registry.bind("ZZZZ", ref)

    def test_failed_release_does_not_fail_bind(self, registry, store, monkeypatch, caplog):
        code = registry.allocate()
        registry.bind(code, store.put(b"1", "a.txt", "text/plain"))

        def boom(blob_id):
            raise OSError("disk gone")

        monkeypatch.setattr(store, "delete", boom)
        second = store.put(b"2", "b.txt", "text/plain")
        registry.bind(code, second)
        assert registry.resolve(code).file_ref == second
        assert "Error removing file" in caplog.text

    @pytest.mark.parametrize("case", ["never_allocated", "unbound", "expired"])
    def test_resolve_not_found(self, registry, store, clock, case):
        code = "ZZZZ"
        if case != "never_allocated":
            code = registry.allocate()
        if case == "expired":
            registry.bind(code, store.put(b"x", "a.txt", "text/plain"))
            clock.advance(TTL.total_seconds())
            registry.scheduler.run_pending()
        with pytest.raises(NotFoundError):
            registry.resolve(code)

    def test_concurrent_binds_release_every_superseded_blob(self, registry, store):
        code = registry.allocate()

        def worker():
            for _ in range(25):
                registry.bind(code, store.put(b"x", "a.txt", "text/plain"))

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(store) == 1
        assert store.get(registry.resolve(code).file_ref.id).data == b"x"


class TestExpiry:
    def test_expires_after_ttl(self, registry, store, clock):
        code = registry.allocate()
        ref = store.put(b"data", "a.txt", "text/plain")
        registry.bind(code, ref)

        clock.advance(TTL.total_seconds() - 1)
        assert registry.scheduler.run_pending() == 0
        assert registry.resolve(code).file_ref == ref

        clock.advance(1)
        assert registry.scheduler.run_pending() == 1
        assert code not in registry
        with pytest.raises(NotFoundError):
            store.get(ref.id)

    def test_rebind_does_not_extend_ttl(self, registry, store, clock):
        code = registry.allocate()
        clock.advance(3000)
        registry.bind(code, store.put(b"x", "a.txt", "text/plain"))
        clock.advance(600)
        registry.scheduler.run_pending()
        assert code not in registry

    def test_evict_is_identity_checked(self, registry, store, clock):
        code = registry.allocate()
        session = registry._sessions[code]
        assert registry.evict(session) is True
        assert registry.evict(session) is False

        # a new session that happens to reuse the freed code is left alone
        registry.key_generator = cycling_keys(code)
        assert registry.allocate() == code
        assert registry.evict(session) is False
        assert code in registry

    def test_eviction_survives_delete_failure(self, registry, store, clock, monkeypatch):
        code = registry.allocate()
        registry.bind(code, store.put(b"x", "a.txt", "text/plain"))

        def boom(blob_id):
            raise OSError("disk gone")

        monkeypatch.setattr(store, "delete", boom)
        clock.advance(TTL.total_seconds())
        assert registry.scheduler.run_pending() == 1
        assert code not in registry

    def test_close_releases_everything(self, registry, store):
        for _ in range(3):
            registry.bind(registry.allocate(), store.put(b"x", "a.txt", "text/plain"))
        assert registry.close() == 3
        assert len(registry) == 0
        assert len(store) == 0


def test_reference_scenario(clock):
    store = MemoryBlobStore()
    registry = _registry(store, clock, KeyGenerator("23456789ACDEFGHJKLMNPRSTUVWXYZ", 4))

    code = registry.allocate("Kindle")
    assert re.fullmatch(r"[23456789ACDEFGHJKLMNPRSTUVWXYZ]{4}", code)

    payload = b"EPUBDATA!!"
    registry.bind(code, store.put(payload, "book.epub", "application/epub+zip"))
    ref = registry.resolve(code).file_ref
    blob = store.get(ref.id)
    assert (blob.data, blob.ref.name, blob.ref.media_type) == (payload, "book.epub", "application/epub+zip")

    registry.bind(code, store.put(b"%PDF-1.7", "book2.pdf", "application/pdf"))
    blob = store.get(registry.resolve(code).file_ref.id)
    assert (blob.data, blob.ref.name, blob.ref.media_type) == (b"%PDF-1.7", "book2.pdf", "application/pdf")
    assert len(store) == 1

    clock.advance(3600)
    registry.scheduler.run_pending()
    with pytest.raises(NotFoundError):
        registry.resolve(code)
    assert len(store) == 0


def test_resolve_returns_stable_snapshot(registry, store):
    code = registry.allocate()
    first = store.put(b"1", "a.txt", "text/plain")
    registry.bind(code, first)
    snapshot = registry.resolve(code)
    assert snapshot.is_bound
    assert snapshot is not registry._sessions[code]

    registry.bind(code, store.put(b"2", "b.txt", "text/plain"))
    assert snapshot.file_ref == first
    assert registry._sessions[code].file_ref != first
