"""Tests pour le registre de verrous par clé."""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor

from multilang_rag.infra.ops.locks import KeyedLocks, make_sync_key


def test_make_sync_key() -> None:
    """Teste la composition des clés de verrou."""
    assert make_sync_key("s1", "p1", "en") == ("sync", "s1", "p1", "en")


def test_sync_keys_with_separators_do_not_collide() -> None:
    """Teste que des identifiants contenant ':' donnent des clés distinctes."""
    assert make_sync_key("a:b", "c", "en") != make_sync_key("a", "b:c", "en")
    locks = KeyedLocks()
    with locks.hold(make_sync_key("a:b", "c", "en")):
        with locks.hold(make_sync_key("a", "b:c", "en")):
            assert len(locks) == 2
    assert len(locks) == 0


def test_same_key_is_serialized() -> None:
    """Teste qu'une même clé n'est jamais tenue par deux threads à la fois."""
    locks = KeyedLocks()
    active = 0
    peak = 0
    guard = threading.Lock()

    def work() -> None:
        nonlocal active, peak
        with locks.hold("k"):
            with guard:
                active += 1
                peak = max(peak, active)
            time.sleep(0.01)
            with guard:
                active -= 1

    with ThreadPoolExecutor(max_workers=4) as pool:
        for _ in range(8):
            pool.submit(work)
    assert peak == 1
    assert len(locks) == 0


def test_distinct_keys_run_concurrently() -> None:
    """Teste que des clés distinctes ne se bloquent pas."""
    locks = KeyedLocks()
    barrier = threading.Barrier(2, timeout=2)

    def work(key: str) -> bool:
        with locks.hold(key):
            barrier.wait()
        return True

    with ThreadPoolExecutor(max_workers=2) as pool:
        results = list(pool.map(work, ["a", "b"]))
    assert results == [True, True]
