"""
Tests for the named inter-process lock.
"""
import os

import pytest

from wgnet.exceptions import LockTimeout
from wgnet.services.lock import NamedLock


def test_acquire_and_release(tmp_path):
    path = str(tmp_path / "locks" / "wgnet-test.lock")

    with NamedLock(path, timeout=0.1) as lock:
        assert lock.held
        assert os.path.exists(path)
        with open(path) as f:
            assert f.read().strip() == str(os.getpid())

    assert not lock.held


def test_second_holder_times_out(tmp_path):
    path = str(tmp_path / "wgnet-test.lock")

    with NamedLock(path, timeout=0.1):
        with pytest.raises(LockTimeout) as info:
            NamedLock(path, timeout=0.2, poll_interval=0.05).acquire()

    assert info.value.name == path


def test_released_on_exception(tmp_path):
    path = str(tmp_path / "wgnet-test.lock")

    with pytest.raises(RuntimeError):
        with NamedLock(path, timeout=0.1):
            raise RuntimeError("step blew up")

    with NamedLock(path, timeout=0.1) as lock:
        assert lock.held


def test_different_names_do_not_contend(tmp_path):
    with NamedLock(str(tmp_path / "a.lock"), timeout=0.1):
        with NamedLock(str(tmp_path / "b.lock"), timeout=0.1) as other:
            assert other.held
