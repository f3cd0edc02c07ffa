import asyncio
import logging
import threading

import pytest

from adapters.db.resilience import (
    ConnectionState,
    ConnectionSupervisor,
    MessageFaultClassifier,
    RetryPolicy,
)
from sqlgate.errors.exceptions import (
    BackendConnectionError,
    ConnectTimeoutError,
    TransientConnectionError,
    ValidationError,
)


class Harness:
    """Supervisor wired to counting open/close callables and a recording sleep."""

    def __init__(self, *, open_errors=(), close_error=None, policy=None):
        self.opened = 0
        self.closed = []
        self.sleeps = []
        self._open_errors = list(open_errors)
        self._close_error = close_error
        self.supervisor = ConnectionSupervisor(
            open_handle=self._open,
            close_handle=self._close,
            policy=policy or RetryPolicy(),
            sleep=self._sleep,
            name="test",
        )

    async def _open(self):
        self.opened += 1
        if self._open_errors:
            raise self._open_errors.pop(0)
        return f"handle-{self.opened}"

    async def _close(self, handle):
        self.closed.append(handle)
        if self._close_error is not None:
            raise self._close_error

    async def _sleep(self, seconds):
        self.sleeps.append(seconds)


def test_classifier_matches_fault_vocabulary_case_insensitively():
    classify = MessageFaultClassifier()
    assert classify(Exception("Connection reset by peer"))
    assert classify(Exception("ETIMEDOUT while reading"))
    assert classify(Exception("[08S01] Communication link failure"))
    assert not classify(Exception("Incorrect syntax near 'SELEC'"))
    assert not classify(Exception("Violation of PRIMARY KEY constraint"))


def test_classifier_markers_are_injectable():
    classify = MessageFaultClassifier(["deadlock"])
    assert classify(Exception("Transaction was DEADLOCKED"))
    assert not classify(Exception("connection reset"))


def test_connection_fault_is_retried_with_linear_backoff():
    h = Harness()
    seen = []

    async def operation(handle):
        seen.append(handle)
        if len(seen) < 3:
            raise OSError("connection reset by peer")
        return "rows"

    assert asyncio.run(h.supervisor.run(operation)) == "rows"
    assert seen == ["handle-1", "handle-2", "handle-3"]
    assert h.sleeps == [1.0, 2.0]
    # each reconnect closes the stale handle first
    assert h.closed == ["handle-1", "handle-2"]
    assert h.supervisor.state is ConnectionState.CONNECTED


def test_retry_budget_exhausted_raises_transient_error():
    h = Harness()
    calls = []

    async def operation(handle):
        calls.append(handle)
        raise OSError("socket hang up")

    with pytest.raises(TransientConnectionError) as ei:
        asyncio.run(h.supervisor.run(operation))
    assert len(calls) == 3  # first attempt + 2 retries
    assert h.sleeps == [1.0, 2.0]
    assert ei.value.retryable is True
    assert isinstance(ei.value.__cause__, OSError)


@pytest.mark.parametrize(
    "error",
    [
        RuntimeError("Incorrect syntax near 'FROM'"),
        ValidationError("Only SELECT queries are allowed"),
    ],
)
def test_logic_errors_are_never_retried(error):
    h = Harness()
    calls = []

    async def operation(handle):
        calls.append(handle)
        raise error

    with pytest.raises(type(error)):
        asyncio.run(h.supervisor.run(operation))
    assert len(calls) == 1
    assert h.sleeps == []


def test_acquisition_errors_are_never_retried():
    # the message looks like a network fault, but it happened while connecting
    h = Harness(open_errors=[OSError("connection refused")])
    calls = []

    async def operation(handle):
        calls.append(handle)
        return "unreachable"

    with pytest.raises(BackendConnectionError):
        asyncio.run(h.supervisor.run(operation))
    assert calls == []
    assert h.opened == 1
    assert h.sleeps == []
    assert h.supervisor.state is ConnectionState.DISCONNECTED


def test_stale_handle_close_failure_is_logged_not_fatal(caplog):
    h = Harness(close_error=RuntimeError("pool already closed"))

    async def scenario():
        await h.supervisor.connect()
        h.supervisor.invalidate()
        return await h.supervisor.acquire()

    with caplog.at_level(logging.WARNING, logger="adapters.db.resilience"):
        handle = asyncio.run(scenario())
    assert handle == "handle-2"
    assert h.closed == ["handle-1"]
    assert "pool already closed" in caplog.text


def test_waiter_times_out_and_resets_state():
    policy = RetryPolicy(poll_interval=0.1, connect_wait_timeout=0.5)
    h = Harness(policy=policy)
    h.supervisor.state = ConnectionState.CONNECTING

    with pytest.raises(ConnectTimeoutError):
        asyncio.run(h.supervisor.connect())
    assert h.sleeps == [0.1] * 5
    assert h.supervisor.state is ConnectionState.DISCONNECTED
    assert h.opened == 0


def test_concurrent_callers_share_one_connection_attempt():
    gate = asyncio.Event
    opened = []

    async def scenario():
        release = gate()

        async def open_handle():
            opened.append(1)
            await release.wait()
            return "shared"

        async def close_handle(handle):
            return None

        sup = ConnectionSupervisor(
            open_handle=open_handle,
            close_handle=close_handle,
            policy=RetryPolicy(poll_interval=0.01, connect_wait_timeout=5),
        )
        first = asyncio.create_task(sup.acquire())
        await asyncio.sleep(0)
        assert sup.state is ConnectionState.CONNECTING
        second = asyncio.create_task(sup.acquire())
        await asyncio.sleep(0.02)
        release.set()
        return await asyncio.gather(first, second)

    assert asyncio.run(scenario()) == ["shared", "shared"]
    assert len(opened) == 1


def test_waiter_sees_failed_attempt_as_connection_error():
    async def scenario():
        release = asyncio.Event()

        async def open_handle():
            await release.wait()
            raise OSError("login failed")

        async def close_handle(handle):
            return None

        sup = ConnectionSupervisor(
            open_handle=open_handle,
            close_handle=close_handle,
            policy=RetryPolicy(poll_interval=0.01, connect_wait_timeout=5),
        )
        first = asyncio.create_task(sup.connect())
        await asyncio.sleep(0)
        second = asyncio.create_task(sup.connect())
        await asyncio.sleep(0.02)
        release.set()
        return await asyncio.gather(first, second, return_exceptions=True)

    first, second = asyncio.run(scenario())
    assert isinstance(first, BackendConnectionError)
    assert isinstance(second, BackendConnectionError)
    assert "while waiting" in str(second)


def test_out_of_band_fault_forces_reconnect():
    h = Harness()

    async def scenario():
        await h.supervisor.connect()
        h.supervisor.mark_disconnected(OSError("pool error"))
        assert h.supervisor.state is ConnectionState.DISCONNECTED
        return await h.supervisor.acquire()

    assert asyncio.run(scenario()) == "handle-2"
    assert h.closed == ["handle-1"]


def test_close_is_idempotent():
    h = Harness()

    async def scenario():
        await h.supervisor.connect()
        await h.supervisor.close()
        await h.supervisor.close()

    asyncio.run(scenario())
    assert h.closed == ["handle-1"]
    assert h.supervisor.state is ConnectionState.DISCONNECTED


def test_fault_during_reconnect_does_not_start_a_second_attempt():
    opens = []
    closed = []
    active = {"now": 0, "peak": 0}

    async def scenario():
        release = asyncio.Event()
        faulted = asyncio.Event()

        async def open_handle():
            opens.append(1)
            n = len(opens)
            active["now"] += 1
            active["peak"] = max(active["peak"], active["now"])
            try:
                if n > 1:
                    await release.wait()
                return f"handle-{n}"
            finally:
                active["now"] -= 1

        async def close_handle(handle):
            closed.append(handle)

        sup = ConnectionSupervisor(
            open_handle=open_handle,
            close_handle=close_handle,
            policy=RetryPolicy(backoff_base=0.01, poll_interval=0.01),
        )

        async def operation(handle):
            if handle == "handle-1":
                sup.mark_disconnected(OSError("pool error"))
                faulted.set()
                # another caller starts reconnecting before this one fails
                while sup.state is not ConnectionState.CONNECTING:
                    await asyncio.sleep(0)
                raise OSError("connection reset")
            return "rows"

        async def reconnect():
            await faulted.wait()
            return await sup.acquire()

        first = asyncio.create_task(sup.run(operation))
        second = asyncio.create_task(reconnect())
        await asyncio.sleep(0.05)
        release.set()
        return await asyncio.gather(first, second)

    assert asyncio.run(scenario()) == ["rows", "handle-2"]
    assert active["peak"] == 1
    assert len(opens) == 2
    assert closed == ["handle-1"]


def test_fault_reported_from_a_worker_thread_is_applied_on_the_loop(caplog):
    h = Harness()

    async def scenario():
        await h.supervisor.connect()
        await asyncio.to_thread(h.supervisor.mark_disconnected, OSError("reset"))
        await asyncio.sleep(0)
        return h.supervisor.state

    with caplog.at_level(logging.WARNING, logger="adapters.db.resilience"):
        state = asyncio.run(scenario())
    assert state is ConnectionState.DISCONNECTED
    faults = [r for r in caplog.records if "connection fault" in r.getMessage()]
    assert len(faults) == 1
    assert faults[0].thread == threading.get_ident()


def _slow_supervisor(release, closed, policy=None):
    async def open_handle():
        await release.wait()
        return "late"

    async def close_handle(handle):
        closed.append(handle)

    return ConnectionSupervisor(
        open_handle=open_handle,
        close_handle=close_handle,
        policy=policy or RetryPolicy(poll_interval=0.01),
    )


def test_close_during_connect_discards_the_new_handle():
    closed = []

    async def scenario():
        release = asyncio.Event()
        sup = _slow_supervisor(release, closed)
        attempt = asyncio.create_task(sup.connect())
        await asyncio.sleep(0)
        assert sup.state is ConnectionState.CONNECTING
        await sup.close()
        release.set()
        (outcome,) = await asyncio.gather(attempt, return_exceptions=True)
        return sup, outcome

    sup, outcome = asyncio.run(scenario())
    assert isinstance(outcome, BackendConnectionError)
    assert "abandoned" in str(outcome)
    assert closed == ["late"]
    assert sup.state is ConnectionState.DISCONNECTED


def test_attempt_outliving_a_waiter_timeout_discards_its_handle():
    closed = []

    async def scenario():
        release = asyncio.Event()
        sup = _slow_supervisor(
            release, closed, RetryPolicy(poll_interval=0.01, connect_wait_timeout=0.05)
        )
        attempt = asyncio.create_task(sup.connect())
        await asyncio.sleep(0)
        with pytest.raises(ConnectTimeoutError):
            await sup.connect()
        release.set()
        (outcome,) = await asyncio.gather(attempt, return_exceptions=True)
        return sup, outcome

    sup, outcome = asyncio.run(scenario())
    assert isinstance(outcome, BackendConnectionError)
    assert closed == ["late"]
    assert sup.state is ConnectionState.DISCONNECTED
