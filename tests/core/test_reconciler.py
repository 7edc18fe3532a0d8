# tests/core/test_reconciler.py
"""
Тесты пересчёта вместимости и статуса маршрута.
"""

from __future__ import annotations

import random
from decimal import Decimal
from uuid import uuid4

import pytest

from src.core.routes.models import CapacityState
from src.core.routes.reconciler import capacity_delta_for, derive_status, reconcile
from src.shared.events.booking_events import BookingCancelled, BookingConfirmed
from src.shared.models.enums import RouteStatus


D = Decimal


def _state(available_kg: str, status: RouteStatus, total_kg: str = "1000",
           total_m3: str | None = None, available_m3: str | None = None) -> CapacityState:
    return CapacityState(
        total_kg=D(total_kg),
        available_kg=D(available_kg),
        total_m3=D(total_m3) if total_m3 is not None else None,
        available_m3=D(available_m3) if available_m3 is not None else None,
        status=status,
    )


class TestReconcileScenarios:
    """Сценарии подтверждения и отмены бронирований."""

    def test_confirm_then_cancel_restores_route(self) -> None:
        route = CapacityState.full(D("1000"))

        booked = reconcile(route, D("-400"))
        assert booked.available_kg == D("600")
        assert booked.status == RouteStatus.BOOKED_PARTIAL

        released = reconcile(booked, D("400"))
        assert released.available_kg == D("1000")
        assert released.status == RouteStatus.PLANNED

    def test_booking_remaining_capacity_fills_route(self) -> None:
        state = _state("400", RouteStatus.BOOKED_PARTIAL)

        result = reconcile(state, D("-400"))

        assert result.available_kg == D("0")
        assert result.status == RouteStatus.BOOKED_FULL

    def test_below_epsilon_is_full(self) -> None:
        state = _state("400.005", RouteStatus.BOOKED_PARTIAL)

        result = reconcile(state, D("-400"))

        assert result.status == RouteStatus.BOOKED_FULL

    def test_overbooking_clamped_to_zero(self) -> None:
        result = reconcile(_state("300", RouteStatus.BOOKED_PARTIAL), D("-500"))

        assert result.available_kg == D("0")
        assert result.status == RouteStatus.BOOKED_FULL

    def test_release_clamped_to_total(self) -> None:
        result = reconcile(_state("900", RouteStatus.BOOKED_PARTIAL), D("500"))

        assert result.available_kg == D("1000")
        assert result.status == RouteStatus.PLANNED

    def test_totals_never_change(self) -> None:
        result = reconcile(_state("900", RouteStatus.BOOKED_PARTIAL, total_m3="50", available_m3="40"),
                           D("-100"), D("-10"))

        assert result.total_kg == D("1000")
        assert result.total_m3 == D("50")
        assert result.available_m3 == D("30")


class TestVolume:
    """Учёт объёма."""

    def test_volume_keeps_route_partial(self) -> None:
        state = _state("100", RouteStatus.BOOKED_PARTIAL, total_m3="50", available_m3="10")

        result = reconcile(state, D("-100"), D("-5"))

        assert result.available_kg == D("0")
        assert result.available_m3 == D("5")
        assert result.status == RouteStatus.BOOKED_PARTIAL

    def test_volume_alone_makes_route_partial(self) -> None:
        state = CapacityState.full(D("1000"), D("50"))

        result = reconcile(state, D("0"), D("-10"))

        assert result.status == RouteStatus.BOOKED_PARTIAL

    def test_missing_delta_keeps_volume(self) -> None:
        state = _state("1000", RouteStatus.PLANNED, total_m3="50", available_m3="50")

        result = reconcile(state, D("-100"))

        assert result.available_m3 == D("50")

    def test_untracked_volume_stays_none(self) -> None:
        result = reconcile(CapacityState.full(D("1000")), D("-100"), D("-5"))

        assert result.total_m3 is None
        assert result.available_m3 is None


class TestStickyStatuses:
    """Статусы, которые не меняются событиями бронирования."""

    @pytest.mark.parametrize("status", [RouteStatus.COMPLETED, RouteStatus.CANCELLED])
    def test_terminal_statuses(self, status: RouteStatus) -> None:
        result = reconcile(_state("1000", status), D("-1000"))

        assert result.available_kg == D("0")
        assert result.status == status

    @pytest.mark.parametrize("delta", ["-1000", "-200", "0"])
    def test_in_progress_is_kept(self, delta: str) -> None:
        result = reconcile(_state("1000", RouteStatus.IN_PROGRESS), D(delta))

        assert result.status == RouteStatus.IN_PROGRESS

    def test_planned_stays_planned_when_free(self) -> None:
        assert derive_status(RouteStatus.PLANNED, D("1000"), D("1000"), None, None) == RouteStatus.PLANNED

    def test_unknown_available_volume_counts_as_free(self) -> None:
        status = derive_status(RouteStatus.BOOKED_PARTIAL, D("1000"), D("1000"), D("50"), None)

        assert status == RouteStatus.PLANNED


class TestCapacityDelta:
    """Знак изменения по типу события."""

    def _event(self, cls, volume: str | None = "5"):
        return cls(
            booking_id=uuid4(),
            route_id=uuid4(),
            booked_weight_kg=D("400"),
            booked_volume_m3=D(volume) if volume is not None else None,
        )

    def test_confirmed_is_negative(self) -> None:
        assert capacity_delta_for(self._event(BookingConfirmed)) == (D("-400"), D("-5"))

    def test_cancelled_is_positive(self) -> None:
        assert capacity_delta_for(self._event(BookingCancelled)) == (D("400"), D("5"))

    def test_missing_volume(self) -> None:
        assert capacity_delta_for(self._event(BookingConfirmed, None)) == (D("-400"), None)


class TestCapacityBoundsOverSequences:
    """Свободное место остаётся в [0, total] после любой последовательности изменений."""

    @pytest.mark.parametrize("seed", range(20))
    def test_random_delta_sequence(self, seed: int) -> None:
        rng = random.Random(seed)
        state = CapacityState.full(D("1000"), D("40"))

        for _ in range(60):
            delta_kg = D(rng.randint(-1500, 1500)) / 4
            delta_m3 = D(rng.randint(-60, 60)) / 2 if rng.random() < 0.7 else None

            state = reconcile(state, delta_kg, delta_m3)

            assert D("0") <= state.available_kg <= state.total_kg
            assert D("0") <= state.available_m3 <= state.total_m3
            assert state.status in (
                RouteStatus.PLANNED,
                RouteStatus.BOOKED_PARTIAL,
                RouteStatus.BOOKED_FULL,
            )
            if state.available_kg == state.total_kg and state.available_m3 == state.total_m3:
                assert state.status == RouteStatus.PLANNED

    @pytest.mark.parametrize("deltas", [
        ["-400", "-400", "-400", "400", "400", "400"],
        ["-1000", "-1", "1", "1000", "1000"],
        ["-999.995", "0.004", "-0.004", "999.995"],
        ["2000", "-3000", "500"],
    ])
    def test_listed_sequences(self, deltas: list[str]) -> None:
        state = CapacityState.full(D("1000"))

        for delta in deltas:
            state = reconcile(state, D(delta))
            assert D("0") <= state.available_kg <= state.total_kg
