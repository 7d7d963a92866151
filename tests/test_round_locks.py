"""Per-round lock registry."""

import threading

from sdlc_governance.services import round_locks


class TestRoundLocks:
    def test_same_key_same_lock(self):
        assert round_locks.lock_for(round_locks.round_key(1)) is round_locks.lock_for(round_locks.round_key(1))
        assert round_locks.lock_for(round_locks.round_key(1)) is not round_locks.lock_for(round_locks.round_key(2))

    def test_round_and_project_keys_differ(self):
        assert round_locks.round_key(5) != round_locks.project_key(5)

    def test_hold_serialises(self):
        key = round_locks.round_key(9)
        order = []

        def worker(name):
            with round_locks.hold(key):
                order.append(f"{name}-in")
                order.append(f"{name}-out")

        threads = [threading.Thread(target=worker, args=(n,)) for n in ("a", "b", "c")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        # No interleaving: every "in" is immediately followed by its own "out"
        for i in range(0, len(order), 2):
            assert order[i].split("-")[0] == order[i + 1].split("-")[0]

    def test_discard(self):
        key = round_locks.round_key(3)
        first = round_locks.lock_for(key)
        round_locks.discard(key)
        assert round_locks.lock_for(key) is not first
