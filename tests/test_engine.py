"""
tests/test_engine.py

Pytest tests for TargetOrchestrator.

Coverage
--------
- First-run suppression records a baseline without notifying
- No duplicate notification for ids already seen
- Client-side dedupe of repeated ids within one extraction
- Keyword filter is a silent skip, and filtered ids are still recorded
- Seen-before-notify bias when delivery fails or raises
- Prune then flush after each successful poll; no flush on empty poll
- Inter-target delay between targets only
- Cycle isolation when one target exhausts its retries
- Run counters; last success only stamped after a successful extraction
- Unreadable dedupe state is recovered before it is ever overwritten
"""

from __future__ import annotations

from collections import deque

import pytest

from fakes import (
    FakeSessionFactory,
    MemoryDedupeStorage,
    RecordingNotifier,
    RecordingStopToken,
    ScriptedSource,
    make_row,
    make_target,
)
from listing_watch.domain.listings import Listing, Target
from listing_watch.scraping.dedupe import DeduplicationStore
from listing_watch.scraping.engine import TargetOrchestrator
from listing_watch.scraping.errors import HardFaultError, ListingExtractionError
from listing_watch.scraping.rate_limiter import IntervalRateLimiter
from listing_watch.scraping.retry import RetryEngine
from listing_watch.scraping.supervisor import SessionSupervisor


EXHAUSTED = object()


class _ScriptedRetryEngine:
    """
    Stands in for RetryEngine: returns scripted listing batches per target.
    `EXHAUSTED` plays a target whose retries all failed.
    """

    def __init__(self, script: dict[str, list]) -> None:
        self._script = {key: deque(value) for key, value in script.items()}
        self.attempted: list[str] = []
        self.last_attempt_succeeded = False

    def attempt(self, target: Target) -> list[Listing]:
        self.attempted.append(target.name)
        self.last_attempt_succeeded = False
        batches = self._script.get(target.store_id)
        if not batches:
            self.last_attempt_succeeded = True
            return []
        batch = batches.popleft()
        if batch is EXHAUSTED:
            return []
        if isinstance(batch, BaseException):
            raise batch
        self.last_attempt_succeeded = True
        return [Listing.from_raw(row) for row in batch]


def _orchestrator(
    retry_engine,
    storage: MemoryDedupeStorage,
    notifier: RecordingNotifier,
    stop_token: RecordingStopToken,
    **kwargs,
) -> TargetOrchestrator:
    return TargetOrchestrator(
        retry_engine=retry_engine,
        dedupe=DeduplicationStore(storage=storage),
        notifier=notifier,
        stop_token=stop_token,
        notification_limiter=IntervalRateLimiter(min_interval_seconds=0, stop_token=stop_token),
        inter_target_delay_seconds=kwargs.pop("inter_target_delay_seconds", 15.0),
        **kwargs,
    )


MICKEY = make_target("Mickey")
MINNIE = make_target("Minnie")


class TestFirstRun:
    def test_first_poll_records_baseline_without_notifying(
        self,
        memory_storage: MemoryDedupeStorage,
        notifier: RecordingNotifier,
        stop_token: RecordingStopToken,
    ) -> None:
        retry = _ScriptedRetryEngine(
            {MICKEY.store_id: [[make_row("1"), make_row("2")], [make_row("3"), make_row("2")]]}
        )
        orchestrator = _orchestrator(retry, memory_storage, notifier, stop_token)
        orchestrator.prepare([MICKEY])

        assert orchestrator.is_first_run(MICKEY)
        assert orchestrator.run_cycle([MICKEY]) == 0
        assert notifier.listings == []
        assert memory_storage.data[MICKEY.store_id] == ["1", "2"]
        assert not orchestrator.is_first_run(MICKEY)

        assert orchestrator.run_cycle([MICKEY]) == 1
        assert notifier.notified_ids == ["3"]

    def test_prior_state_skips_first_run(
        self,
        notifier: RecordingNotifier,
        stop_token: RecordingStopToken,
    ) -> None:
        storage = MemoryDedupeStorage({MICKEY.store_id: ["1"]})
        retry = _ScriptedRetryEngine({MICKEY.store_id: [[make_row("1"), make_row("2")]]})
        orchestrator = _orchestrator(retry, storage, notifier, stop_token)
        orchestrator.prepare([MICKEY])

        orchestrator.run_cycle([MICKEY])

        assert notifier.notified_ids == ["2"]

    def test_empty_first_poll_keeps_first_run(
        self,
        memory_storage: MemoryDedupeStorage,
        notifier: RecordingNotifier,
        stop_token: RecordingStopToken,
    ) -> None:
        retry = _ScriptedRetryEngine({MICKEY.store_id: [[], [make_row("1")]]})
        orchestrator = _orchestrator(retry, memory_storage, notifier, stop_token)
        orchestrator.prepare([MICKEY])

        orchestrator.run_cycle([MICKEY])
        assert orchestrator.is_first_run(MICKEY)
        assert memory_storage.saves == 0

        orchestrator.run_cycle([MICKEY])
        assert notifier.listings == []


class TestDeduplication:
    @pytest.fixture()
    def seeded_storage(self) -> MemoryDedupeStorage:
        return MemoryDedupeStorage({MICKEY.store_id: ["seed"]})

    def test_seen_ids_are_never_renotified(
        self,
        seeded_storage: MemoryDedupeStorage,
        notifier: RecordingNotifier,
        stop_token: RecordingStopToken,
    ) -> None:
        batch = [make_row("1"), make_row("2")]
        retry = _ScriptedRetryEngine({MICKEY.store_id: [batch, batch, batch]})
        orchestrator = _orchestrator(retry, seeded_storage, notifier, stop_token)
        orchestrator.prepare([MICKEY])

        for _ in range(3):
            orchestrator.run_cycle([MICKEY])

        assert notifier.notified_ids == ["1", "2"]

    def test_duplicate_ids_within_one_poll_first_wins(
        self,
        seeded_storage: MemoryDedupeStorage,
        notifier: RecordingNotifier,
        stop_token: RecordingStopToken,
    ) -> None:
        retry = _ScriptedRetryEngine(
            {MICKEY.store_id: [[make_row("1", "First"), make_row("1", "Second")]]}
        )
        orchestrator = _orchestrator(retry, seeded_storage, notifier, stop_token)
        orchestrator.prepare([MICKEY])

        orchestrator.run_cycle([MICKEY])

        assert [listing.title for _, listing, _ in notifier.listings] == ["First"]

    def test_failed_delivery_is_not_retried(
        self,
        seeded_storage: MemoryDedupeStorage,
        stop_token: RecordingStopToken,
    ) -> None:
        failing = RecordingNotifier(deliver=False)
        retry = _ScriptedRetryEngine({MICKEY.store_id: [[make_row("1")], [make_row("1")]]})
        orchestrator = _orchestrator(retry, seeded_storage, failing, stop_token)
        orchestrator.prepare([MICKEY])

        assert orchestrator.run_cycle([MICKEY]) == 0
        orchestrator.run_cycle([MICKEY])

        assert failing.notified_ids == ["1"]
        assert "1" in seeded_storage.data[MICKEY.store_id]

    def test_raising_notifier_does_not_break_the_poll(
        self,
        seeded_storage: MemoryDedupeStorage,
        stop_token: RecordingStopToken,
    ) -> None:
        exploding = RecordingNotifier(raise_on_listing=True)
        retry = _ScriptedRetryEngine({MICKEY.store_id: [[make_row("1"), make_row("2")]]})
        orchestrator = _orchestrator(retry, seeded_storage, exploding, stop_token)
        orchestrator.prepare([MICKEY])

        orchestrator.run_cycle([MICKEY])

        assert exploding.notified_ids == ["1", "2"]
        assert seeded_storage.data[MICKEY.store_id] == ["seed", "1", "2"]

    def test_prune_bounds_the_store_after_poll(
        self,
        seeded_storage: MemoryDedupeStorage,
        notifier: RecordingNotifier,
        stop_token: RecordingStopToken,
    ) -> None:
        retry = _ScriptedRetryEngine(
            {MICKEY.store_id: [[make_row(str(index)) for index in range(5)]]}
        )
        orchestrator = _orchestrator(
            retry, seeded_storage, notifier, stop_token, max_dedupe_entries=3
        )
        orchestrator.prepare([MICKEY])

        orchestrator.run_cycle([MICKEY])

        assert seeded_storage.data[MICKEY.store_id] == ["2", "3", "4"]


class TestKeywordFilter:
    def test_only_matching_titles_are_notified(
        self,
        notifier: RecordingNotifier,
        stop_token: RecordingStopToken,
    ) -> None:
        target = make_target("Iconic", keywords=["iconic", "mickey"])
        storage = MemoryDedupeStorage({target.store_id: ["seed"]})
        retry = _ScriptedRetryEngine(
            {
                target.store_id: [
                    [
                        make_row("1", "Lorcana Iconic Mickey Enchanted"),
                        make_row("2", "Lorcana Iconic Minnie"),
                    ]
                ]
            }
        )
        orchestrator = _orchestrator(retry, storage, notifier, stop_token)
        orchestrator.prepare([target])

        orchestrator.run_cycle([target])

        assert notifier.notified_ids == ["1"]
        assert storage.data[target.store_id] == ["seed", "1", "2"]


class TestCycle:
    def test_inter_target_delay_only_between_targets(
        self,
        memory_storage: MemoryDedupeStorage,
        notifier: RecordingNotifier,
        stop_token: RecordingStopToken,
    ) -> None:
        orchestrator = _orchestrator(
            _ScriptedRetryEngine({}),
            memory_storage,
            notifier,
            stop_token,
            inter_target_delay_seconds=15.0,
        )
        third = make_target("Goofy")

        orchestrator.run_cycle([MICKEY, MINNIE, third])

        assert stop_token.sleeps == [15.0, 15.0]

    def test_unexpected_error_in_one_target_does_not_stop_cycle(
        self,
        notifier: RecordingNotifier,
        stop_token: RecordingStopToken,
    ) -> None:
        storage = MemoryDedupeStorage({MINNIE.store_id: ["seed"]})
        retry = _ScriptedRetryEngine(
            {MICKEY.store_id: [RuntimeError("boom")], MINNIE.store_id: [[make_row("9")]]}
        )
        orchestrator = _orchestrator(retry, storage, notifier, stop_token)
        orchestrator.prepare([MICKEY, MINNIE])

        assert orchestrator.run_cycle([MICKEY, MINNIE]) == 1
        assert retry.attempted == ["Mickey", "Minnie"]

    def test_hard_fault_escapes_the_cycle(
        self,
        memory_storage: MemoryDedupeStorage,
        notifier: RecordingNotifier,
        stop_token: RecordingStopToken,
    ) -> None:
        retry = _ScriptedRetryEngine({MICKEY.store_id: [HardFaultError("threshold reached")]})
        orchestrator = _orchestrator(retry, memory_storage, notifier, stop_token)

        with pytest.raises(HardFaultError):
            orchestrator.run_cycle([MICKEY, MINNIE])
        assert retry.attempted == ["Mickey"]

    def test_counters_track_cycles_and_notifications(
        self,
        notifier: RecordingNotifier,
        stop_token: RecordingStopToken,
    ) -> None:
        storage = MemoryDedupeStorage({MICKEY.store_id: ["seed"]})
        retry = _ScriptedRetryEngine({MICKEY.store_id: [[make_row("1"), make_row("2")]]})
        orchestrator = _orchestrator(retry, storage, notifier, stop_token)
        orchestrator.prepare([MICKEY])

        orchestrator.run_cycle([MICKEY])
        orchestrator.run_cycle([MICKEY])

        counters = orchestrator.counters
        assert counters.cycles_completed == 2
        assert counters.listings_notified == 2
        assert counters.last_success_at is not None

    def test_cycle_with_every_target_exhausted_is_not_a_success(
        self,
        memory_storage: MemoryDedupeStorage,
        notifier: RecordingNotifier,
        stop_token: RecordingStopToken,
    ) -> None:
        retry = _ScriptedRetryEngine({MICKEY.store_id: [EXHAUSTED], MINNIE.store_id: [EXHAUSTED]})
        orchestrator = _orchestrator(retry, memory_storage, notifier, stop_token)

        orchestrator.run_cycle([MICKEY, MINNIE])

        counters = orchestrator.counters
        assert counters.cycles_completed == 1
        assert counters.last_success_at is None

    def test_one_extracting_target_makes_the_cycle_a_success(
        self,
        memory_storage: MemoryDedupeStorage,
        notifier: RecordingNotifier,
        stop_token: RecordingStopToken,
    ) -> None:
        retry = _ScriptedRetryEngine({MICKEY.store_id: [EXHAUSTED], MINNIE.store_id: [[make_row("1")]]})
        orchestrator = _orchestrator(retry, memory_storage, notifier, stop_token)

        orchestrator.run_cycle([MICKEY, MINNIE])

        assert orchestrator.counters.last_success_at is not None

    def test_screenshot_failure_does_not_block_notification(
        self,
        notifier: RecordingNotifier,
        stop_token: RecordingStopToken,
    ) -> None:
        def _broken_capture(_listing: Listing) -> bytes | None:
            raise RuntimeError("screenshot timed out")

        storage = MemoryDedupeStorage({MICKEY.store_id: ["seed"]})
        retry = _ScriptedRetryEngine({MICKEY.store_id: [[make_row("1")]]})
        orchestrator = _orchestrator(
            retry, storage, notifier, stop_token, screenshot_capturer=_broken_capture
        )
        orchestrator.prepare([MICKEY])

        orchestrator.run_cycle([MICKEY])

        assert notifier.listings[0][2] is None


class TestUnreadableDedupeState:
    def test_failed_load_never_overwrites_durable_history(
        self,
        notifier: RecordingNotifier,
        stop_token: RecordingStopToken,
    ) -> None:
        storage = MemoryDedupeStorage({MICKEY.store_id: ["A1", "A2"]})
        storage.fail_load = True
        retry = _ScriptedRetryEngine(
            {MICKEY.store_id: [[make_row("A3")], [make_row("A1"), make_row("A4")]]}
        )
        orchestrator = _orchestrator(retry, storage, notifier, stop_token)
        orchestrator.prepare([MICKEY])

        orchestrator.run_cycle([MICKEY])

        assert notifier.notified_ids == []
        assert storage.saves == 0
        assert storage.data[MICKEY.store_id] == ["A1", "A2"]

        storage.fail_load = False
        orchestrator.run_cycle([MICKEY])

        assert notifier.notified_ids == ["A4"]
        assert storage.data[MICKEY.store_id] == ["A1", "A2", "A3", "A4"]

    def test_recovered_prior_state_ends_first_run(
        self,
        notifier: RecordingNotifier,
        stop_token: RecordingStopToken,
    ) -> None:
        storage = MemoryDedupeStorage({MICKEY.store_id: ["A1"]})
        storage.fail_load = True
        retry = _ScriptedRetryEngine({MICKEY.store_id: [[make_row("A1"), make_row("A5")]]})
        orchestrator = _orchestrator(retry, storage, notifier, stop_token)
        orchestrator.prepare([MICKEY])
        assert orchestrator.is_first_run(MICKEY)

        storage.fail_load = False
        orchestrator.run_cycle([MICKEY])

        assert notifier.notified_ids == ["A5"]
        assert storage.data[MICKEY.store_id] == ["A1", "A5"]


class TestCycleIsolationWithRetries:
    def test_exhausted_target_does_not_block_the_next(
        self,
        notifier: RecordingNotifier,
        stop_token: RecordingStopToken,
    ) -> None:
        storage = MemoryDedupeStorage({MINNIE.store_id: ["seed"]})
        source = ScriptedSource(
            {
                MICKEY.store_id: [ListingExtractionError("blocked")],
                MINNIE.store_id: [[make_row("7")]],
            }
        )
        supervisor = SessionSupervisor(
            factory=FakeSessionFactory(),
            stop_token=stop_token,
            max_age_seconds=3600,
            hard_restart_threshold=10,
            close_timeout_seconds=1,
            start_timeout_seconds=5,
            killer=lambda pids: 0,
            reaper=lambda: 0,
        )
        retry = RetryEngine(
            supervisor=supervisor,
            source=source,
            stop_token=stop_token,
            max_retries=3,
            base_delay_seconds=10,
            operation_timeout_seconds=5,
            notifier=notifier,
        )
        orchestrator = _orchestrator(retry, storage, notifier, stop_token)
        orchestrator.prepare([MICKEY, MINNIE])

        try:
            notified = orchestrator.run_cycle([MICKEY, MINNIE])
        finally:
            supervisor.shutdown()

        assert notified == 1
        assert notifier.notified_ids == ["7"]
        assert len(notifier.errors) == 1
        assert MICKEY.store_id not in storage.data
        assert supervisor.state.consecutive_failures == 0
        assert stop_token.sleeps == [10, 20, 40, 15.0]
