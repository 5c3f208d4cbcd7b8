# tests/test_locks.py
import threading
import pytest
from tenant_billing.errors import ConcurrentModificationError
from tenant_billing.services.locks import LockRegistry


def test_same_key_is_exclusive():
    registry = LockRegistry(timeout=0.05)
    with registry.hold(('utility_charge', 1)):
        assert registry.is_held(('utility_charge', 1))
        with pytest.raises(ConcurrentModificationError):
            with registry.hold(('utility_charge', 1)):
                pass
    assert not registry.is_held(('utility_charge', 1))


def test_different_keys_do_not_block():
    registry = LockRegistry(timeout=0.05)
    with registry.hold(('utility_charge', 1)):
        with registry.hold(('utility_charge', 2)):
            assert registry.is_held(('utility_charge', 2))


def test_lock_is_released_on_error():
    registry = LockRegistry(timeout=0.05)
    with pytest.raises(RuntimeError):
        with registry.hold('period'):
            raise RuntimeError("boom")
    with registry.hold('period'):
        pass


def test_waiter_proceeds_after_release():
    registry = LockRegistry(timeout=2)
    entered = threading.Event()
    release = threading.Event()
    order = []

    def holder():
        with registry.hold('charge'):
            order.append('holder')
            entered.set()
            release.wait(1)

    thread = threading.Thread(target=holder)
    thread.start()
    entered.wait(1)
    release.set()
    with registry.hold('charge'):
        order.append('waiter')
    thread.join()
    assert order == ['holder', 'waiter']


def test_idle_locks_are_dropped():
    registry = LockRegistry(timeout=0.05)
    for charge_id in range(50):
        with registry.hold(('utility_charge', charge_id)):
            assert len(registry) == 1
    assert len(registry) == 0


def test_timed_out_waiter_does_not_leak_lock():
    registry = LockRegistry(timeout=0.05)
    with registry.hold('period'):
        with pytest.raises(ConcurrentModificationError):
            with registry.hold('period'):
                pass
        assert len(registry) == 1
    assert len(registry) == 0
