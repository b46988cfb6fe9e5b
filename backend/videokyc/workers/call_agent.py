"""
Call Agent
Runs one side of a video-KYC call from the command line.

Run as separate process:
    python -m videokyc.workers.call_agent --role requester --user-id <uuid>
    python -m videokyc.workers.call_agent --role responder --user-id <uuid> \
        --decision approved --notes "ID matches"

The requester asks for a call and waits until it ends. The responder
accepts the first eligible request, and once media is flowing records
its decision after --review-seconds.
"""
import argparse
import asyncio
import logging
import os
import signal
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from supabase import acreate_client

from videokyc.core.config import ConfigManager, VideoKycConfig
from videokyc.domain.interfaces.call_notifier import LoggingNotifier
from videokyc.domain.models.call_phase import CallView, RequesterPhase, ResponderPhase
from videokyc.domain.models.call_record import VerificationResult
from videokyc.domain.services.call_orchestrator import CallOrchestrator
from videokyc.domain.services.requester_orchestrator import RequesterOrchestrator
from videokyc.domain.services.responder_orchestrator import ResponderOrchestrator
from videokyc.infrastructure.factory import (
    CallRecordStoreFactory,
    PeerConnectionProviderFactory,
    SignalingRelayFactory,
)
from videokyc.services.kyc_service import KycService
from videokyc.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

# Configure logging for worker
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


class CallAgent:
    """
    Drives a single orchestrator until the call finishes or the process
    is asked to stop.
    """

    def __init__(
        self,
        role: str,
        user_id: str,
        config: VideoKycConfig,
        decision: VerificationResult = VerificationResult.APPROVED,
        notes: Optional[str] = None,
        review_seconds: float = 10.0,
    ):
        self.role = role
        self.user_id = user_id
        self.config = config
        self.decision = decision
        self.notes = notes
        self.review_seconds = review_seconds

        self.running = False
        self.orchestrator: Optional[CallOrchestrator] = None
        self._finished = asyncio.Event()
        self._call_started = False
        self._decision_task: Optional[asyncio.Task] = None

    async def build(self) -> CallOrchestrator:
        url = os.getenv("SUPABASE_URL")
        key = os.getenv("SUPABASE_SERVICE_KEY")
        if not url or not key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")

        supabase = await acreate_client(url, key)
        common = dict(
            user_id=self.user_id,
            store=CallRecordStoreFactory.create(self.config.store_provider, supabase=supabase),
            relay=SignalingRelayFactory.create(self.config.signaling_provider, supabase=supabase),
            peer_factory=PeerConnectionProviderFactory.create("aiortc", self.config.ice_servers),
            media_source=PeerConnectionProviderFactory.create_media_source(
                self.config.media_device,
                self.config.media_format,
            ),
            notifier=LoggingNotifier(),
            negotiation_timeout_seconds=self.config.negotiation_timeout_seconds,
            on_phase_change=self._on_phase_change,
        )

        if self.role == "requester":
            return RequesterOrchestrator(**common)

        kyc = KycService(supabase, self.config.documents_bucket, self.config.document_url_ttl_seconds)
        notifications = NotificationService(supabase)
        return ResponderOrchestrator(
            **common,
            decision_listeners=[kyc.apply_call_decision, notifications.notify_call_outcome],
        )

    async def run(self) -> None:
        self.running = True
        self.orchestrator = await self.build()
        logger.info(f"Call agent started as {self.role} ({self.user_id})")

        try:
            if isinstance(self.orchestrator, RequesterOrchestrator):
                if await self.orchestrator.request_call() is None:
                    return
            else:
                await self.orchestrator.start()
            await self._finished.wait()
        finally:
            if self._decision_task is not None:
                self._decision_task.cancel()
            await self.orchestrator.shutdown()
            logger.info("Call agent stopped")

    def stop(self) -> None:
        self.running = False
        self._finished.set()

    def _on_phase_change(self, view: CallView) -> None:
        logger.info(f"[{view.phase}] {view.banner}")

        if view.phase == ResponderPhase.NOTIFIED.value:
            asyncio.ensure_future(self.orchestrator.accept())
        elif view.phase == ResponderPhase.REVIEWING.value:
            self._call_started = True
            self._decision_task = asyncio.ensure_future(self._decide_after_review())
        elif view.phase in (RequesterPhase.CONNECTING.value, ResponderPhase.CONNECTING.value):
            self._call_started = True
        elif view.phase == RequesterPhase.IDLE.value:
            # Requester and responder share the idle value; both end the run
            if self._call_started or self.role == "requester":
                self.stop()

    async def _decide_after_review(self) -> None:
        await asyncio.sleep(self.review_seconds)
        await self.orchestrator.submit_decision(self.decision, self.notes)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one side of a video KYC call")
    parser.add_argument("--role", choices=["requester", "responder"], required=True)
    parser.add_argument("--user-id", required=True)
    parser.add_argument("--decision", choices=[r.value for r in VerificationResult], default="approved")
    parser.add_argument("--notes", default=None)
    parser.add_argument("--review-seconds", type=float, default=10.0)
    return parser.parse_args(argv)


async def main(argv=None):
    """Entry point for running the call agent as separate process."""
    args = parse_args(argv)
    agent = CallAgent(
        role=args.role,
        user_id=args.user_id,
        config=ConfigManager().video_kyc(),
        decision=VerificationResult(args.decision),
        notes=args.notes,
        review_seconds=args.review_seconds,
    )

    # Handle shutdown signals
    loop = asyncio.get_event_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        agent.stop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    await agent.run()


def cli():
    asyncio.run(main())


if __name__ == "__main__":
    cli()
