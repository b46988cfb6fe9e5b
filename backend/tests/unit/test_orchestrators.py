"""
Unit tests for the requester and responder state machines
"""
import warnings
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from videokyc.domain.interfaces.call_record_store import CallStoreError, CALL_FAILED_NOTE
from videokyc.domain.interfaces.peer_connection import PeerConnectionState
from videokyc.domain.interfaces.signaling_relay import SignalingError
from videokyc.domain.models.call_phase import RequesterPhase, ResponderPhase
from videokyc.domain.models.call_record import CallStatus, VerificationResult
from videokyc.domain.services import responder_orchestrator
from videokyc.infrastructure.storage.memory_call_store import InMemoryCallRecordStore


class EagerClaimStore(InMemoryCallRecordStore):
    """Claims every record before the requester can subscribe to it"""

    async def create_call(self, requester_id, call_type=None):
        record = await super().create_call(requester_id)
        await self.update_status(record.id, CallStatus.RESPONDER_CONNECTED, responder_id="admin-9")
        return record


class TestRequester:

    @pytest.mark.asyncio
    async def test_request_creates_waiting_record(self, harness):
        requester = harness.requester()
        try:
            record = await requester.request_call()

            assert record.status == CallStatus.WAITING_RESPONDER
            assert requester.phase == RequesterPhase.WAITING_FOR_RESPONDER
            assert requester.call_id == record.id
            assert requester.relay.joined_call_id == record.id
            assert requester.notifier.titles == ["Call requested"]
            assert "Waiting" in requester.banner
        finally:
            await harness.shutdown()

    @pytest.mark.asyncio
    async def test_request_ignored_when_busy(self, harness):
        requester = harness.requester()
        try:
            await requester.request_call()
            assert await requester.request_call() is None
            assert len(await harness.store.list_waiting_calls()) == 1
        finally:
            await harness.shutdown()

    @pytest.mark.asyncio
    async def test_existing_live_call(self, harness):
        await harness.store.create_call("user-1")
        requester = harness.requester()
        try:
            assert await requester.request_call() is None

            assert requester.phase == RequesterPhase.IDLE
            assert requester.phases == ["requested", "idle"]
            assert requester.notifier.titles == ["Call already requested"]
        finally:
            await harness.shutdown()

    @pytest.mark.asyncio
    async def test_store_failure_on_create(self, harness):
        harness.store.create_call = AsyncMock(side_effect=CallStoreError())
        requester = harness.requester()
        try:
            assert await requester.request_call() is None
            assert requester.phase == RequesterPhase.IDLE
            assert requester.notifier.notices[0].variant == "destructive"
        finally:
            await harness.shutdown()

    @pytest.mark.asyncio
    async def test_relay_failure_releases_record(self, harness):
        requester = harness.requester()
        requester.relay.join = AsyncMock(side_effect=SignalingError())
        try:
            assert await requester.request_call() is None

            assert requester.phase == RequesterPhase.IDLE
            assert "Could not request call" in requester.notifier.titles
            assert await harness.store.get_live_call("user-1") is None
        finally:
            await harness.shutdown()

    @pytest.mark.asyncio
    async def test_claim_before_subscription_is_picked_up(self, harness):
        harness.store = EagerClaimStore()
        requester = harness.requester()
        try:
            await requester.request_call()

            await harness.wait_until(lambda: requester.phase == RequesterPhase.CONNECTING)
            assert requester.media_source.acquire_count == 1
        finally:
            await harness.shutdown()

    @pytest.mark.asyncio
    async def test_role_joined_and_claim_acquire_media_once(self, harness):
        requester = harness.requester()
        try:
            record = await requester.request_call()

            harness.hub.publish(record.id, {"type": "role-joined", "role": "responder"})
            await harness.store.update_status(record.id, CallStatus.RESPONDER_CONNECTED, responder_id="admin-1")

            await harness.wait_until(lambda: requester.phase == RequesterPhase.CONNECTING)
            await harness.wait_until(lambda: requester._queue.empty())
            assert requester.media_source.acquire_count == 1
            assert len(harness.network.peers_for("requester")) == 1
        finally:
            await harness.shutdown()

    @pytest.mark.asyncio
    async def test_requester_role_joined_is_ignored(self, harness):
        requester = harness.requester()
        try:
            record = await requester.request_call()

            harness.hub.publish(record.id, {"type": "role-joined", "role": "requester"})
            await harness.wait_until(lambda: requester._queue.empty())

            assert requester.phase == RequesterPhase.WAITING_FOR_RESPONDER
        finally:
            await harness.shutdown()

    @pytest.mark.asyncio
    async def test_hang_up_when_idle_is_noop(self, harness):
        requester = harness.requester()
        try:
            await requester.hang_up()
            assert requester.phases == []
        finally:
            await harness.shutdown()

    @pytest.mark.asyncio
    async def test_phase_listener_failure_is_contained(self, harness):
        requester = harness.requester()
        requester.on_phase_change = lambda view: 1 / 0
        try:
            await requester.request_call()
            assert requester.phase == RequesterPhase.WAITING_FOR_RESPONDER
        finally:
            await harness.shutdown()


class TestResponder:

    @pytest.mark.asyncio
    async def test_existing_waiting_call_notifies_on_start(self, harness):
        await harness.store.create_call("user-1")
        responder = harness.responder()
        try:
            await responder.start()

            await harness.wait_until(lambda: responder.phase == ResponderPhase.NOTIFIED)
            assert responder.incoming.requester_id == "user-1"
            assert responder.notifier.titles == ["Incoming verification call"]
        finally:
            await harness.shutdown()

    @pytest.mark.asyncio
    async def test_own_request_is_ignored(self, harness):
        responder = harness.responder(user_id="user-1")
        try:
            await responder.start()
            await harness.store.create_call("user-1")
            await harness.wait_until(lambda: responder._queue.empty())

            assert responder.phase == ResponderPhase.IDLE
        finally:
            await harness.shutdown()

    @pytest.mark.asyncio
    async def test_second_request_while_notified_is_ignored(self, harness):
        responder = harness.responder()
        try:
            await responder.start()
            await harness.store.create_call("user-1")
            await harness.store.create_call("user-2")
            await harness.wait_until(lambda: responder._queue.empty())

            assert responder.phase == ResponderPhase.NOTIFIED
            assert responder.incoming.requester_id == "user-1"
        finally:
            await harness.shutdown()

    @pytest.mark.asyncio
    async def test_waiting_call_offered_after_reject(self, harness):
        responder = harness.responder()
        try:
            await responder.start()
            await harness.store.create_call("user-1")
            await harness.store.create_call("user-2")
            await harness.wait_until(lambda: responder.phase == ResponderPhase.NOTIFIED)

            assert await responder.reject()

            await harness.wait_until(
                lambda: responder.phase == ResponderPhase.NOTIFIED and responder.incoming.requester_id == "user-2"
            )
            assert responder.phases == [
                ResponderPhase.NOTIFIED,
                ResponderPhase.REJECTED,
                ResponderPhase.IDLE,
                ResponderPhase.NOTIFIED,
            ]
        finally:
            await harness.shutdown()

    @pytest.mark.asyncio
    async def test_waiting_call_offered_after_decision(self, harness):
        requester, responder = harness.requester(), harness.responder()
        try:
            await responder.start()
            await requester.request_call()
            await harness.wait_until(lambda: responder.phase == ResponderPhase.NOTIFIED)
            await responder.accept()
            await harness.wait_until(lambda: responder.phase == ResponderPhase.REVIEWING)

            await harness.store.create_call("user-2")
            await harness.wait_until(lambda: responder._queue.empty())
            assert responder.phase == ResponderPhase.REVIEWING

            await responder.submit_decision(VerificationResult.APPROVED, "ID matches")

            await harness.wait_until(lambda: responder.phase == ResponderPhase.NOTIFIED)
            assert responder.incoming.requester_id == "user-2"
        finally:
            await harness.shutdown()

    @pytest.mark.asyncio
    async def test_no_waiting_call_stays_idle_after_reject(self, harness):
        responder = harness.responder()
        try:
            await responder.start()
            await harness.store.create_call("user-1")
            await harness.wait_until(lambda: responder.phase == ResponderPhase.NOTIFIED)

            assert await responder.reject()
            await harness.wait_until(lambda: responder._queue.empty())

            assert responder.phase == ResponderPhase.IDLE
            assert responder.incoming is None
        finally:
            await harness.shutdown()

    @pytest.mark.asyncio
    async def test_reject_runs_decision_listeners(self, harness):
        seen = []

        async def recorder(record):
            seen.append(record.status)

        responder = harness.responder(decision_listeners=[recorder])
        try:
            await responder.start()
            record = await harness.store.create_call("user-1")
            await harness.wait_until(lambda: responder.phase == ResponderPhase.NOTIFIED)

            assert await responder.reject()

            assert seen == [CallStatus.REJECTED]
            stored = await harness.store.get_call(record.id)
            assert stored.responder_id == "admin-1"
        finally:
            await harness.shutdown()

    @pytest.mark.asyncio
    async def test_accept_without_incoming_is_refused(self, harness):
        responder = harness.responder()
        try:
            assert not await responder.accept()
            assert not await responder.reject()
            assert await responder.submit_decision(VerificationResult.APPROVED) is None
        finally:
            await harness.shutdown()

    @pytest.mark.asyncio
    async def test_racing_responders(self, harness):
        requester = harness.requester()
        first, second = harness.responder("admin-1"), harness.responder("admin-2")
        try:
            await first.start()
            await second.start()
            record = await requester.request_call()
            await harness.wait_until(
                lambda: first.phase == ResponderPhase.NOTIFIED and second.phase == ResponderPhase.NOTIFIED
            )

            assert await first.accept()
            assert not await second.accept()

            assert second.phase == ResponderPhase.IDLE
            assert "Call already taken" in second.notifier.titles
            assert second.media_source.acquire_count == 0
            stored = await harness.store.get_call(record.id)
            assert stored.responder_id == "admin-1"
        finally:
            await harness.shutdown()

    @pytest.mark.asyncio
    async def test_decision_listeners_run_and_failures_are_contained(self, harness):
        seen = []

        async def broken(record):
            raise RuntimeError("profile update failed")

        async def recorder(record):
            seen.append(record)

        requester = harness.requester()
        responder = harness.responder(decision_listeners=[broken, recorder])
        try:
            await responder.start()
            await requester.request_call()
            await harness.wait_until(lambda: responder.phase == ResponderPhase.NOTIFIED)
            await responder.accept()
            await harness.wait_until(lambda: responder.phase == ResponderPhase.REVIEWING)

            record = await responder.submit_decision(VerificationResult.REJECTED, "Blurry document")

            assert record is not None
            assert seen == [record]
            assert responder.phase == ResponderPhase.IDLE
        finally:
            await harness.shutdown()

    @pytest.mark.asyncio
    async def test_peer_failure_while_reviewing(self, harness):
        requester, responder = harness.requester(), harness.responder()
        try:
            await responder.start()
            record = await requester.request_call()
            await harness.wait_until(lambda: responder.phase == ResponderPhase.NOTIFIED)
            await responder.accept()
            await harness.wait_until(
                lambda: responder.phase == ResponderPhase.REVIEWING and requester.phase == RequesterPhase.VERIFYING
            )

            harness.network.peers_for("responder")[0]._set_state(PeerConnectionState.FAILED)

            await harness.wait_until(
                lambda: responder.phase == ResponderPhase.IDLE and requester.phase == RequesterPhase.IDLE
            )
            assert "Connection lost" in responder.notifier.titles
            assert "Call ended" in requester.notifier.titles
            stored = await harness.store.get_call(record.id)
            assert stored.status == CallStatus.REJECTED
            assert stored.notes == CALL_FAILED_NOTE
        finally:
            await harness.shutdown()

    @pytest.mark.asyncio
    async def test_accept_after_requester_cancelled(self, harness):
        requester, responder = harness.requester(), harness.responder()
        try:
            await responder.start()
            await requester.request_call()
            await harness.wait_until(lambda: responder.phase == ResponderPhase.NOTIFIED)
            await requester.hang_up()

            assert not await responder.accept()
            assert "Call already taken" in responder.notifier.titles
            assert responder.phase == ResponderPhase.IDLE
        finally:
            await harness.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_stops_watching(self, harness):
        responder = harness.responder()
        await responder.start()
        await responder.shutdown()

        await harness.store.create_call("user-1")

        assert responder.phase == ResponderPhase.IDLE
        assert responder.incoming is None


def test_responder_module_compiles_without_warnings():
    source = Path(responder_orchestrator.__file__).read_text()
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        compile(source, responder_orchestrator.__file__, "exec")
