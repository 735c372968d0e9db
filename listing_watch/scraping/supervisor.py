"""
Lifecycle owner of the single shared rendering session.

Phases::

    UNINITIALIZED -> READY -> (STALE | CRASHED) -> RESTARTING -> READY
    any -> HARD_FAULT (terminal)

All rendering work, including creating and closing the session, runs on one
dedicated daemon render thread. The calling thread only waits on futures, in
short slices, so it can always enforce a deadline: when an orderly close
overruns its grace period, the session's OS processes are killed by identity
and the render thread is abandoned for a fresh one. An abandoned thread never
holds up interpreter exit.
"""

from __future__ import annotations

import itertools
import logging
import queue
import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import TypeVar

from listing_watch.domain.monitoring import SessionPhase, SessionState
from listing_watch.scraping.base import RenderSession, SessionFactory
from listing_watch.scraping.errors import (
    HardFaultError,
    SessionStartError,
    SessionTimeoutError,
    ShutdownRequested,
)
from listing_watch.scraping.logging_utils import describe_error, log_event
from listing_watch.scraping.pacing import StopToken
from listing_watch.scraping.processes import kill_pids, reap_stray_browsers

logger = logging.getLogger(__name__)

T = TypeVar("T")

ProcessKiller = Callable[[Iterable[int]], int]
StrayReaper = Callable[[], int]

_worker_ids = itertools.count(1)


class RenderWorker:
    """
    A single daemon thread running submitted calls in order.

    `retire` cancels calls that have not started and lets the thread exit once
    its current call returns. A thread stuck in a call is left behind.
    """

    def __init__(self) -> None:
        self._calls: queue.SimpleQueue = queue.SimpleQueue()
        self._thread = threading.Thread(
            target=self._drain,
            name=f"render-{next(_worker_ids)}",
            daemon=True,
        )
        self._thread.start()

    @property
    def thread(self) -> threading.Thread:
        return self._thread

    def submit(self, fn: Callable[..., T], *args: object) -> Future[T]:
        future: Future[T] = Future()
        self._calls.put((future, fn, args))
        return future

    def retire(self) -> None:
        while True:
            try:
                call = self._calls.get_nowait()
            except queue.Empty:
                break
            if call is not None:
                call[0].cancel()
        self._calls.put(None)

    def _drain(self) -> None:
        while True:
            call = self._calls.get()
            if call is None:
                return
            future, fn, args = call
            if not future.set_running_or_notify_cancel():
                continue
            try:
                result = fn(*args)
            except BaseException as exc:
                future.set_exception(exc)
            else:
                future.set_result(result)


class SessionSupervisor:
    def __init__(
        self,
        *,
        factory: SessionFactory,
        stop_token: StopToken,
        max_age_seconds: float,
        hard_restart_threshold: int,
        close_timeout_seconds: float = 10.0,
        start_timeout_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        killer: ProcessKiller = kill_pids,
        reaper: StrayReaper = reap_stray_browsers,
    ) -> None:
        self._factory = factory
        self._stop_token = stop_token
        self._max_age_seconds = max_age_seconds
        self._hard_restart_threshold = max(1, hard_restart_threshold)
        self._close_timeout_seconds = close_timeout_seconds
        self._start_timeout_seconds = start_timeout_seconds
        self._clock = clock
        self._killer = killer
        self._reaper = reaper

        self._state = SessionState()
        self._session: RenderSession | None = None
        self._pending_start: Future[RenderSession] | None = None
        self._worker = RenderWorker()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def state(self) -> SessionState:
        return self._state.snapshot()

    @property
    def has_session(self) -> bool:
        return self._session is not None

    def ensure_ready(self) -> RenderSession:
        """
        Return a live session, creating or proactively replacing it first.
        """

        self._stop_token.raise_if_stopped()
        if self._state.phase is SessionPhase.HARD_FAULT:
            raise HardFaultError("Session supervisor is in hard fault.")
        if self._closed:
            raise ShutdownRequested("Session supervisor has been shut down.")

        if self._session is None:
            return self._start()

        age = self.session_age()
        if age is not None and age > self._max_age_seconds:
            self._state.phase = SessionPhase.STALE
            log_event(
                logger,
                logging.INFO,
                "session_stale",
                age_seconds=round(age, 1),
                max_age_seconds=self._max_age_seconds,
            )
            return self.restart()
        return self._session

    def run(self, operation: Callable[[RenderSession], T], *, timeout: float) -> T:
        """
        Run `operation(session)` on the render thread under a deadline.

        Failures are not counted here; callers decide whether an error is a
        session failure via `record_failure`.
        """

        session = self.ensure_ready()
        future = self._worker.submit(operation, session)
        return self._stop_token.wait_result(future, timeout=timeout)

    def record_failure(self, exc: BaseException) -> int:
        with self._lock:
            self._state.consecutive_failures += 1
            failures = self._state.consecutive_failures
            if self._session is not None and self._state.phase is SessionPhase.READY:
                self._state.phase = SessionPhase.CRASHED

        log_event(
            logger,
            logging.WARNING,
            "session_failure_recorded",
            consecutive_failures=failures,
            hard_restart_threshold=self._hard_restart_threshold,
            error=describe_error(exc),
        )
        return failures

    def record_success(self) -> None:
        with self._lock:
            self._state.consecutive_failures = 0

    def hard_fault_due(self) -> bool:
        return self._state.consecutive_failures >= self._hard_restart_threshold

    def restart(self, *, aggressive: bool = False) -> RenderSession:
        """
        Replace the current session with a fresh one.

        With `aggressive=True`, every marked rendering process other than the
        new session's is killed before it starts.
        """

        self._stop_token.raise_if_stopped()
        previous_phase = self._state.phase
        self._state.phase = SessionPhase.RESTARTING
        log_event(
            logger,
            logging.INFO,
            "session_restarting",
            previous_phase=previous_phase.value,
            aggressive=aggressive,
        )

        self._close_current()
        if aggressive:
            self._reap_strays()
        return self._start()

    def enter_hard_fault(self, reason: str) -> None:
        """
        Force cleanup of every rendering process and raise HardFaultError.
        """

        self._state.phase = SessionPhase.HARD_FAULT
        log_event(
            logger,
            logging.CRITICAL,
            "session_hard_fault",
            reason=reason,
            consecutive_failures=self._state.consecutive_failures,
        )
        self._close_current()
        self._reap_strays()
        self._retire_worker()
        raise HardFaultError(reason)

    def shutdown(self) -> None:
        """
        Bounded release of the session. Safe to call more than once.
        """

        if self._closed:
            return
        self._closed = True

        self._close_current()
        if self._pending_start is not None and not self._pending_start.done():
            # A launch still in flight has no handle yet; reclaim by marker.
            self._reap_strays()
        self._retire_worker()
        if self._state.phase is not SessionPhase.HARD_FAULT:
            self._state.phase = SessionPhase.UNINITIALIZED
        log_event(logger, logging.INFO, "session_supervisor_shutdown")

    def session_age(self) -> float | None:
        if self._state.created_at is None:
            return None
        return self._clock() - self._state.created_at

    def _start(self) -> RenderSession:
        self._stop_token.raise_if_stopped()
        future = self._worker.submit(self._factory)
        self._pending_start = future
        try:
            session = self._stop_token.wait_result(
                future, timeout=self._start_timeout_seconds
            )
        except SessionTimeoutError as exc:
            self._state.phase = SessionPhase.CRASHED
            self._reap_strays()
            self._replace_worker()
            raise SessionStartError(str(exc)) from exc
        except ShutdownRequested:
            raise
        except Exception as exc:
            self._state.phase = SessionPhase.CRASHED
            raise SessionStartError(f"Session launch failed: {describe_error(exc)}") from exc
        finally:
            if future.done():
                self._pending_start = None

        self._session = session
        self._state.phase = SessionPhase.READY
        self._state.created_at = self._clock()
        log_event(logger, logging.INFO, "session_ready")
        return session

    def _close_current(self) -> None:
        session = self._session
        if session is None:
            return

        future = self._worker.submit(session.close)
        try:
            future.result(timeout=self._close_timeout_seconds)
            log_event(logger, logging.INFO, "session_closed")
        except FutureTimeoutError:
            log_event(
                logger,
                logging.WARNING,
                "session_close_timeout",
                grace_seconds=self._close_timeout_seconds,
            )
            self._force_kill(session)
            self._replace_worker()
        except Exception as exc:
            log_event(
                logger,
                logging.WARNING,
                "session_close_failed",
                error=describe_error(exc),
            )
            self._force_kill(session)
        finally:
            self._session = None
            self._state.created_at = None

    def _force_kill(self, session: RenderSession) -> None:
        try:
            pids = session.process_ids()
        except Exception as exc:
            log_event(
                logger,
                logging.ERROR,
                "session_pid_lookup_failed",
                error=describe_error(exc),
            )
            return
        killed = self._killer(pids)
        log_event(logger, logging.WARNING, "session_force_killed", killed=killed)

    def _reap_strays(self) -> None:
        try:
            self._reaper()
        except Exception as exc:
            log_event(
                logger,
                logging.ERROR,
                "stray_reap_failed",
                error=describe_error(exc),
            )

    def _replace_worker(self) -> None:
        self._retire_worker()
        self._worker = RenderWorker()

    def _retire_worker(self) -> None:
        self._worker.retire()
