"""Engine behavior tests: selection, notification dedup, failures, confirmation.

The engine is async; each test drives it with ``asyncio.run``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx
import pandas as pd
import pytest

from alerts.engine import AlertEngine, RoomMonitor
from alerts.models import Alert, AlertCategory, DedupPolicy, DispatchState
from alerts.poller import CancellationToken
from conftest import FIXED_NOW, FakeSource, RecordingTransport, env, fall


def _engine(source: FakeSource, transport: RecordingTransport, **kwargs: Any) -> AlertEngine:
    return AlertEngine(source, transport, clock=lambda: FIXED_NOW, **kwargs)


# ---------------------------------------------------------------------------
# Selection through poll()
# ---------------------------------------------------------------------------

class TestPollView:
    def test_mixed_input_scenario(self, source, transport) -> None:
        """One fall and one environmental alert are both shown and notified."""
        source.fall_alerts = [fall(1, "2025-01-01T10:00:00Z")]
        source.env_alerts = [env(1000, room="203")]
        engine = _engine(source, transport)

        view = asyncio.run(engine.poll())

        assert [a.id for a in view.items] == [1, 1000]
        assert view.last_refreshed == FIXED_NOW
        assert transport.ids == [1, 1000]
        assert engine.state.dispatched_ids == {1, 1000}

    def test_never_more_than_two(self, source, transport) -> None:
        source.fall_alerts = [fall(i, f"2025-01-0{i}T00:00:00Z") for i in range(1, 9)]
        source.env_alerts = [env(1000 + i) for i in range(6)]

        view = asyncio.run(_engine(source, transport).poll())

        assert len(view.items) == 2
        assert view.items[0].id == 8
        assert view.items[1].id == 1000
        assert len(transport.sent) == 2

    def test_no_alerts(self, source, transport) -> None:
        view = asyncio.run(_engine(source, transport).poll())
        assert view.items == ()
        assert transport.sent == []

    def test_notification_content(self, source, transport) -> None:
        source.fall_alerts = [fall(4, "2025-01-01T10:00:00Z", room="305", message="Fall in 305")]
        source.env_alerts = [env(1000, room="203", temperature=31.0, humidity=80.0)]

        asyncio.run(_engine(source, transport, title="Ward alert").poll())

        (t1, b1, p1), (t2, b2, p2) = transport.sent
        assert t1 == t2 == "Ward alert"
        assert b1 == "Fall in 305"
        assert p1 == {"location_id": "305", "id": 4, "category": "fall"}
        assert "31°C" in b2 and "80%" in b2
        assert p2 == {"location_id": "203", "id": 1000, "category": "environmental"}

    def test_malformed_alert_passes_through(self, source, transport) -> None:
        source.fall_alerts = [Alert(id=2, category=AlertCategory.FALL)]

        view = asyncio.run(_engine(source, transport).poll())

        assert view.items[0].message == ""
        assert transport.sent[0][1] == ""
        assert transport.sent[0][2]["location_id"] == ""


# ---------------------------------------------------------------------------
# Dedup policies
# ---------------------------------------------------------------------------

class TestDedup:
    def test_unchanged_input_notifies_once(self, source, transport) -> None:
        source.fall_alerts = [fall(1, "2025-01-01T10:00:00Z")]
        source.env_alerts = [env(1000)]
        engine = _engine(source, transport)

        async def _twice() -> None:
            await engine.poll()
            await engine.poll()

        asyncio.run(_twice())

        assert transport.ids == [1, 1000]

    def test_replace_renotifies_after_disappearance(self, source, transport) -> None:
        engine = _engine(source, transport)
        present = [fall(1, "2025-01-01T10:00:00Z")]

        async def _cycle() -> None:
            source.fall_alerts = present
            await engine.poll()
            source.fall_alerts = []
            await engine.poll()
            assert engine.state.dispatched_ids == set()
            source.fall_alerts = present
            await engine.poll()

        asyncio.run(_cycle())

        assert transport.ids == [1, 1]

    def test_union_does_not_renotify(self, source, transport) -> None:
        engine = _engine(source, transport, policy=DedupPolicy.UNION)
        present = [fall(1, "2025-01-01T10:00:00Z")]

        async def _cycle() -> None:
            source.fall_alerts = present
            await engine.poll()
            source.fall_alerts = []
            await engine.poll()
            source.fall_alerts = present
            await engine.poll()

        asyncio.run(_cycle())

        assert transport.ids == [1]
        assert engine.state.dispatched_ids == {1}

    def test_union_cleared_by_reset(self, source, transport) -> None:
        engine = _engine(source, transport, policy=DedupPolicy.UNION)
        source.fall_alerts = [fall(1, "2025-01-01T10:00:00Z")]

        async def _cycle() -> None:
            await engine.poll()
            engine.reset()
            await engine.poll()

        asyncio.run(_cycle())

        assert transport.ids == [1, 1]

    def test_newer_alert_replaces_selection(self, source, transport) -> None:
        engine = _engine(source, transport)

        async def _cycle() -> None:
            source.fall_alerts = [fall(1, "2025-01-01T10:00:00Z")]
            await engine.poll()
            source.fall_alerts = [fall(1, "2025-01-01T10:00:00Z"), fall(2, "2025-01-01T11:00:00Z")]
            await engine.poll()

        asyncio.run(_cycle())

        assert transport.ids == [1, 2]
        assert engine.state.dispatched_ids == {2}

    def test_shared_state_is_continued(self, source, transport) -> None:
        state = DispatchState(dispatched_ids={1})
        source.fall_alerts = [fall(1, "2025-01-01T10:00:00Z")]

        asyncio.run(_engine(source, transport, state=state).poll())

        assert transport.sent == []

    def test_policy_from_name(self) -> None:
        assert DedupPolicy.from_name(" Union ") is DedupPolicy.UNION
        with pytest.raises(ValueError, match="Unknown dedup policy"):
            DedupPolicy.from_name("forever")


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------

class TestFailures:
    def test_environmental_failure_keeps_fall(self, source, transport, caplog) -> None:
        source.fall_alerts = [fall(1, "2025-01-01T10:00:00Z")]
        source.env_error = httpx.ConnectError("boom")

        with caplog.at_level(logging.WARNING, logger="alerts.engine"):
            view = asyncio.run(_engine(source, transport).poll())

        assert [a.id for a in view.items] == [1]
        assert transport.ids == [1]
        assert any("environmental" in r.getMessage() for r in caplog.records)

    def test_both_sources_fail(self, source, transport) -> None:
        source.fall_error = RuntimeError("down")
        source.env_error = RuntimeError("down")

        view = asyncio.run(_engine(source, transport).poll())

        assert view.items == ()
        assert transport.sent == []

    def test_transport_failure_does_not_stop_cycle(self, source) -> None:
        class _Flaky(RecordingTransport):
            async def dispatch(self, title, body, payload):
                if payload["id"] == 1:
                    raise RuntimeError("notification center unavailable")
                await super().dispatch(title, body, payload)

        flaky = _Flaky()
        source.fall_alerts = [fall(1, "2025-01-01T10:00:00Z")]
        source.env_alerts = [env(1000)]
        engine = _engine(source, flaky)

        asyncio.run(engine.poll())

        assert flaky.ids == [1000]
        assert engine.state.dispatched_ids == {1, 1000}


# ---------------------------------------------------------------------------
# Cancellation and serialization
# ---------------------------------------------------------------------------

class _GatedSource(FakeSource):
    """Fall fetch blocks until ``gate`` is set."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.gate: asyncio.Event | None = None
        self.active = 0
        self.max_active = 0

    async def get_fall_alerts(self):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            return await super().get_fall_alerts()
        finally:
            self.active -= 1


class TestCancellation:
    def test_cancelled_poll_is_discarded(self, transport) -> None:
        source = _GatedSource(fall_alerts=[fall(1, "2025-01-01T10:00:00Z")])
        engine = _engine(source, transport)
        token = CancellationToken()

        async def _run():
            source.gate = asyncio.Event()
            task = asyncio.create_task(engine.poll(token))
            await asyncio.sleep(0)
            token.cancel()
            source.gate.set()
            return await task

        assert asyncio.run(_run()) is None
        assert transport.sent == []
        assert engine.state.dispatched_ids == set()
        assert engine.current.items == ()

    def test_polls_are_serialized(self, transport) -> None:
        source = _GatedSource(fall_alerts=[fall(1, "2025-01-01T10:00:00Z")])
        engine = _engine(source, transport)

        async def _run() -> None:
            source.gate = asyncio.Event()
            first = asyncio.create_task(engine.poll())
            second = asyncio.create_task(engine.poll())
            await asyncio.sleep(0.01)
            source.gate.set()
            await asyncio.gather(first, second)

        asyncio.run(_run())

        assert source.max_active == 1
        assert transport.ids == [1]


# ---------------------------------------------------------------------------
# confirm()
# ---------------------------------------------------------------------------

class TestConfirm:
    def test_confirm_fall_calls_server_and_removes(self, source, transport) -> None:
        source.fall_alerts = [fall(1, "2025-01-01T10:00:00Z")]
        source.env_alerts = [env(1000)]
        engine = _engine(source, transport)

        async def _run():
            await engine.poll()
            return await engine.confirm(1)

        ack = asyncio.run(_run())

        assert ack.acknowledged and ack.persisted
        assert ack.category is AlertCategory.FALL
        assert source.confirmed == [1]
        assert [a.id for a in engine.current.items] == [1000]

    def test_confirm_environmental_is_local(self, source, transport) -> None:
        source.env_alerts = [env(1000)]
        engine = _engine(source, transport)

        async def _run():
            await engine.poll()
            ack = await engine.confirm(1000)
            assert engine.current.items == ()
            view = await engine.poll()
            return ack, view

        ack, view = asyncio.run(_run())

        assert ack.acknowledged and not ack.persisted
        assert source.confirmed == []
        # Still reported by the source, so it comes back; no second notification.
        assert [a.id for a in view.items] == [1000]
        assert transport.ids == [1000]

    def test_confirm_unknown_id_uses_id_range(self, source, transport) -> None:
        engine = _engine(source, transport)

        fall_ack = asyncio.run(engine.confirm(12))
        env_ack = asyncio.run(engine.confirm(1003))

        assert fall_ack.category is AlertCategory.FALL
        assert env_ack.category is AlertCategory.ENVIRONMENTAL
        assert source.confirmed == [12]

    def test_confirm_rejected_by_server(self, source, transport) -> None:
        source.fall_alerts = [fall(1, "2025-01-01T10:00:00Z")]
        source.confirm_response = {"code": 1, "message": "already confirmed"}
        engine = _engine(source, transport)

        async def _run():
            await engine.poll()
            return await engine.confirm(1)

        ack = asyncio.run(_run())

        assert not ack.acknowledged
        assert ack.message == "already confirmed"
        assert [a.id for a in engine.current.items] == [1]

    def test_confirm_transport_error(self, source, transport) -> None:
        source.confirm_error = httpx.ReadTimeout("timed out")
        ack = asyncio.run(_engine(source, transport).confirm(3))

        assert not ack.acknowledged
        assert "timed out" in ack.message


class TestUnnormalisedTimestamps:
    def test_poll_survives_naive_aware_and_garbage(self, source, transport) -> None:
        source.fall_alerts = [
            Alert(id=1, category=AlertCategory.FALL, observed_at=pd.Timestamp("2025-01-01T10:00:00")),
            Alert(id=2, category=AlertCategory.FALL, observed_at=pd.Timestamp("2025-01-01T11:00:00Z")),
            Alert(id=3, category=AlertCategory.FALL, observed_at="not-a-date"),
        ]

        view = asyncio.run(_engine(source, transport).poll())

        assert [a.id for a in view.items] == [2]
        assert transport.ids == [2]


class TestCancelDuringDispatch:
    def test_cancel_stops_remaining_notifications_and_state_update(self, source) -> None:
        token = CancellationToken()

        class _CancellingTransport(RecordingTransport):
            async def dispatch(self, title, body, payload):
                await super().dispatch(title, body, payload)
                token.cancel()

        sender = _CancellingTransport()
        source.fall_alerts = [fall(1, "2025-01-01T10:00:00Z")]
        source.env_alerts = [env(1000)]
        engine = _engine(source, sender)

        assert asyncio.run(engine.poll(token)) is None
        assert sender.ids == [1]
        assert engine.state.dispatched_ids == set()
        assert engine.current.items == ()


# ---------------------------------------------------------------------------
# RoomMonitor
# ---------------------------------------------------------------------------

class TestRoomMonitor:
    def test_latest_alert_for_room(self, source) -> None:
        source.fall_alerts = [fall(1, "2025-01-01T10:00:00Z", room="101"), fall(2, "2025-01-01T11:00:00Z", room="305")]
        source.env_alerts = [env(1000, room="101")]
        monitor = RoomMonitor(source, "101")

        alerts = asyncio.run(monitor.poll())

        assert [a.id for a in alerts] == [1]
        assert monitor.current == alerts

    def test_failing_category_is_empty(self, source) -> None:
        source.fall_error = httpx.ConnectError("down")
        source.env_alerts = [env(1000, room="203")]

        alerts = asyncio.run(RoomMonitor(source, "203").poll())

        assert [a.id for a in alerts] == [1000]

    def test_cancelled_poll_returns_none(self, source) -> None:
        token = CancellationToken()
        token.cancel()
        source.env_alerts = [env(1000, room="203")]
        monitor = RoomMonitor(source, "203")

        assert asyncio.run(monitor.poll(token)) is None
        assert monitor.current == []
