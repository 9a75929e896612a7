"""
tests/test_scanning.py — Single-switch scanning acquisition.
"""

from __future__ import annotations

import pytest

from conftest import MAP, QUIT, START
from gazequest.acquisition.scanning import (
    SCAN_SPEED_SETTING,
    ScanningMachine,
    ScanState,
    clamp_interval,
    make_groups,
    next_index,
)
from gazequest.core.config import ScanningConfig
from gazequest.core.constants import ActionKind, Modality
from gazequest.core.interfaces import InMemorySettingsStore, StaticTargetEnvironment
from gazequest.core.models import TargetRef
from gazequest.core.scheduler import ManualScheduler


@pytest.fixture()
def scan(env: StaticTargetEnvironment, scheduler: ManualScheduler, events: list) -> ScanningMachine:
    return ScanningMachine(Modality.SWITCH, env, scheduler, events.append)


def _big_board(n: int) -> tuple[StaticTargetEnvironment, list[TargetRef]]:
    board = StaticTargetEnvironment()
    targets = [TargetRef(f"t{i}") for i in range(n)]
    for i, t in enumerate(targets):
        board.add(t, (i * 10.0, 0.0, 10.0, 10.0))
    return board, targets


# ──────────────────────────────────────────────────────────────
# Pure helpers
# ──────────────────────────────────────────────────────────────

class TestHelpers:
    def test_groups_of_ceil_sqrt(self) -> None:
        _, targets = _big_board(12)
        groups = make_groups(targets)
        assert [len(g) for g in groups] == [4, 4, 4]
        assert make_groups([]) == []

    def test_next_index_bounces(self) -> None:
        assert next_index(2, 1, 3, reverse_at_ends=True) == (1, -1)
        assert next_index(0, -1, 3, reverse_at_ends=True) == (1, 1)

    def test_next_index_wraps(self) -> None:
        assert next_index(2, 1, 3, reverse_at_ends=False) == (0, 1)
        assert next_index(0, -1, 3, reverse_at_ends=False) == (2, -1)

    def test_single_item_stays(self) -> None:
        assert next_index(0, 1, 1, reverse_at_ends=True) == (0, 1)

    def test_clamp_interval(self) -> None:
        assert clamp_interval(50) == 200.0
        assert clamp_interval(9000) == 3000.0
        assert clamp_interval(800) == 800.0


# ──────────────────────────────────────────────────────────────
# Press handling
# ──────────────────────────────────────────────────────────────

class TestPress:
    def test_first_press_starts_without_event(
        self, scan: ScanningMachine, scheduler: ManualScheduler, events: list
    ) -> None:
        scheduler.advance(2500)
        scan.press()
        assert scan.state is ScanState.SCANNING
        assert scan.highlight_index == 0
        assert scan.highlighted == START
        assert events == []

    def test_highlight_advances_each_interval(
        self, scan: ScanningMachine, scheduler: ManualScheduler
    ) -> None:
        seen: list = []
        scan.on_highlight(lambda i, item: seen.append(item))
        scan.press()
        scheduler.advance(999)
        assert scan.highlighted == START
        scheduler.advance(1)
        assert scan.highlighted == MAP
        scheduler.advance(1000)
        assert scan.highlighted == QUIT
        assert seen == [START, MAP, QUIT]

    def test_second_press_activates_highlighted(
        self, scan: ScanningMachine, scheduler: ManualScheduler, env: StaticTargetEnvironment, events: list
    ) -> None:
        scan.press()
        scheduler.advance(2500)
        scan.press()

        assert len(events) == 1
        ev = events[0]
        assert ev.kind is ActionKind.SELECT
        assert ev.modality is Modality.SWITCH
        assert ev.target == QUIT
        assert ev.accuracy == 1.0
        assert ev.response_time_ms == pytest.approx(500.0)
        assert env.activated == [QUIT]
        assert scan.state is ScanState.STOPPED
        assert scan.highlighted is None

    def test_bounce_at_end(self, scan: ScanningMachine, scheduler: ManualScheduler) -> None:
        scan.press()
        scheduler.advance(3000)
        assert scan.highlighted == MAP
        assert scan.direction == -1

    @pytest.mark.parametrize("n", [1, 2, 3, 7])
    def test_ping_pong_visits_every_candidate(
        self, n: int, scheduler: ManualScheduler, events: list
    ) -> None:
        board, _ = _big_board(n)
        scan = ScanningMachine(Modality.SWITCH, board, scheduler, events.append)
        visited: set[int] = set()

        def _seen(index, item) -> None:
            if index is not None:
                visited.add(index)

        scan.on_highlight(_seen)
        scan.press()
        scheduler.advance(scan.interval_ms * 2 * (n - 1))
        assert visited == set(range(n))

    def test_wrap_at_end(
        self, env: StaticTargetEnvironment, scheduler: ManualScheduler, events: list
    ) -> None:
        scan = ScanningMachine(
            Modality.SWITCH, env, scheduler, events.append,
            config=ScanningConfig(direction_reversal=False),
        )
        scan.press()
        scheduler.advance(3000)
        assert scan.highlighted == START
        assert scan.direction == 1

    def test_reverse(self, scan: ScanningMachine, scheduler: ManualScheduler) -> None:
        scan.press()
        scheduler.advance(1000)
        scan.reverse()
        scheduler.advance(1000)
        assert scan.highlighted == START

    def test_cancel_clears_everything(
        self, scan: ScanningMachine, scheduler: ManualScheduler, events: list
    ) -> None:
        scan.press()
        scan.cancel()
        assert scan.state is ScanState.STOPPED
        assert scan.highlighted is None
        scheduler.advance(5000)
        assert scan.highlighted is None
        assert events == []

    def test_no_eligible_targets_suppresses(
        self, scheduler: ManualScheduler, events: list
    ) -> None:
        scan = ScanningMachine(Modality.SWITCH, StaticTargetEnvironment(), scheduler, events.append)
        scan.press()
        assert scan.state is ScanState.SCANNING
        assert scan.highlighted is None
        scheduler.advance(1000)
        scan.press()
        assert events == []

    def test_item_scanning_recovers_after_empty_refresh(
        self, scheduler: ManualScheduler, events: list
    ) -> None:
        board, targets = _big_board(12)
        scan = ScanningMachine(Modality.SWITCH, board, scheduler, events.append)
        scan.press()
        scan.press()
        assert scan.state is ScanState.ITEM_SCANNING

        for t in targets:
            board.set_enabled(t, False)
        scan.refresh_targets()
        assert scan.items == []
        scan.press()
        assert events == []

        for t in targets:
            board.set_enabled(t, True)
        scan.refresh_targets()
        assert scan.items == targets[:4]
        scan.press()
        assert [e.kind for e in events] == [ActionKind.SELECT]
        assert board.activated == [targets[0]]

    def test_target_disabled_while_highlighted(
        self, scan: ScanningMachine, env: StaticTargetEnvironment, events: list
    ) -> None:
        scan.press()
        env.set_enabled(START, False)
        scan.press()
        assert events == []
        assert scan.state is ScanState.SCANNING

    def test_refresh_keeps_highlight_on_same_target(
        self, scan: ScanningMachine, scheduler: ManualScheduler, env: StaticTargetEnvironment
    ) -> None:
        scan.press()
        scheduler.advance(1000)
        env.set_enabled(START, False)
        scan.refresh_targets()
        assert scan.items == [MAP, QUIT]
        assert scan.highlighted == MAP


# ──────────────────────────────────────────────────────────────
# Group scanning
# ──────────────────────────────────────────────────────────────

class TestGroupScanning:
    def test_small_set_scans_items(self, scan: ScanningMachine) -> None:
        scan.press()
        assert scan.state is ScanState.SCANNING

    def test_large_set_scans_groups_then_items(
        self, scheduler: ManualScheduler, events: list
    ) -> None:
        board, targets = _big_board(12)
        scan = ScanningMachine(Modality.SWITCH, board, scheduler, events.append)

        scan.press()
        assert scan.state is ScanState.GROUP_SCANNING
        assert scan.highlighted == tuple(targets[0:4])

        scheduler.advance(1000)
        scan.press()
        assert scan.state is ScanState.ITEM_SCANNING
        assert scan.items == targets[4:8]
        assert events == []

        scheduler.advance(1000)
        scan.press()
        assert [e.target for e in events] == [targets[5]]
        assert scan.state is ScanState.STOPPED

    def test_exactly_threshold_is_not_grouped(self, scheduler: ManualScheduler, events: list) -> None:
        board, _ = _big_board(10)
        scan = ScanningMachine(Modality.SWITCH, board, scheduler, events.append)
        scan.press()
        assert scan.state is ScanState.SCANNING


# ──────────────────────────────────────────────────────────────
# Speed and rescan
# ──────────────────────────────────────────────────────────────

class TestSpeed:
    def test_adjust_clamps_and_persists(
        self, env: StaticTargetEnvironment, scheduler: ManualScheduler, events: list
    ) -> None:
        settings = InMemorySettingsStore()
        scan = ScanningMachine(Modality.SWITCH, env, scheduler, events.append, settings=settings)
        assert scan.adjust_scan_speed(-500) == 500.0
        assert scan.adjust_scan_speed(-1000) == 200.0
        assert settings.get_setting(SCAN_SPEED_SETTING) == 200.0

    def test_saved_speed_restored(
        self, env: StaticTargetEnvironment, scheduler: ManualScheduler, events: list
    ) -> None:
        settings = InMemorySettingsStore({"input": {"switch": {"scan_speed_ms": 1500}}})
        scan = ScanningMachine(Modality.SWITCH, env, scheduler, events.append, settings=settings)
        assert scan.interval_ms == 1500.0

    def test_new_speed_applies_to_running_scan(
        self, scan: ScanningMachine, scheduler: ManualScheduler
    ) -> None:
        scan.press()
        scan.adjust_scan_speed(-500)
        scheduler.advance(500)
        assert scan.highlighted == MAP

    def test_auto_rescan(
        self, env: StaticTargetEnvironment, scheduler: ManualScheduler, events: list
    ) -> None:
        scan = ScanningMachine(
            Modality.SWITCH, env, scheduler, events.append,
            config=ScanningConfig(auto_rescan=True),
        )
        scan.press()
        scan.press()
        assert scan.state is ScanState.STOPPED
        scheduler.advance(2000)
        assert scan.state is ScanState.SCANNING
        assert scan.highlighted == START
