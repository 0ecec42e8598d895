"""
Tests for bounded step application and best-effort removal.
"""
import pytest

from wgnet.exceptions import StepFailed
from wgnet.services.step_executor import StepExecutor


class Flag:
    """A piece of state that becomes true after a number of polls."""

    def __init__(self, polls_until_true=0):
        self.polls_until_true = polls_until_true
        self.set = False
        self.polls = 0
        self.actions = 0

    def action(self):
        self.actions += 1
        self.set = True

    def verify(self):
        self.polls += 1
        if not self.set:
            return False
        if self.polls_until_true > 0:
            self.polls_until_true -= 1
            return False
        return True


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def executor(sleeps):
    return StepExecutor(poll_interval=0.5, max_attempts=5, sleep=sleeps.append)


def test_skips_action_when_already_satisfied(executor):
    flag = Flag()
    flag.set = True

    assert executor.apply("step", flag.action, flag.verify) is False
    assert flag.actions == 0
    assert executor.mutations == []


def test_runs_action_once_and_verifies(executor, sleeps):
    flag = Flag()

    assert executor.apply("step", flag.action, flag.verify) is True
    assert flag.actions == 1
    assert executor.mutations == ["step"]
    assert sleeps == []


def test_polls_until_state_converges(executor, sleeps):
    flag = Flag(polls_until_true=3)

    executor.apply("carrier", flag.action, flag.verify)

    assert flag.actions == 1
    assert sleeps == [0.5, 0.5, 0.5]


def test_exhaustion_raises_step_failed_with_observed_state(executor, sleeps):
    with pytest.raises(StepFailed) as info:
        executor.apply(
            "bring device up",
            action=lambda: None,
            verify=lambda: False,
            observe=lambda: {"carrier": False},
        )

    assert info.value.step == "bring device up"
    assert info.value.last_observed_state == {"carrier": False}
    # Sleeps only between attempts
    assert len(sleeps) == 4


def test_per_call_budget_overrides_default(executor, sleeps):
    with pytest.raises(StepFailed):
        executor.apply("step", lambda: None, lambda: False, max_attempts=2, poll_interval=0)
    assert sleeps == [0]


def test_action_error_is_wrapped(executor):
    def boom():
        raise OSError(1, "Operation not permitted")

    with pytest.raises(StepFailed) as info:
        executor.apply("create tunnel device", boom, lambda: False)

    assert "Operation not permitted" in info.value.last_observed_state
    assert isinstance(info.value.__cause__, OSError)


def test_action_error_tolerated_when_state_holds(executor):
    state = {"present": False}

    def create_raced():
        state["present"] = True
        raise FileExistsError(17, "File exists")

    assert executor.apply("create", create_raced, lambda: state["present"]) is True


def test_rejects_empty_budget():
    with pytest.raises(ValueError):
        StepExecutor(max_attempts=0)


class TestRemove:
    def test_absent_target_is_a_noop(self, executor):
        calls = []
        assert executor.remove("rm", lambda: calls.append(1), lambda: False) is False
        assert calls == []
        assert executor.mutations == []

    def test_removes_present_target(self, executor):
        state = {"present": True}

        def action():
            state["present"] = False

        assert executor.remove("rm", action, lambda: state["present"]) is True
        assert executor.mutations == ["rm"]

    def test_failure_is_not_raised(self, executor):
        def boom():
            raise FileNotFoundError(2, "No such file or directory")

        assert executor.remove("rm", boom, lambda: True) is False
