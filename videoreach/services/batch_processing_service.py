"""
BatchProcessingService - Campaign batch orchestrator.

Takes a campaign and its pending recipients and drives every recipient
through the personalization pipeline:

    rate-limit check -> claim (processing) -> asset generation -> persist
    assets -> render video -> terminal status + cost + timing

Scheduling is two-level. Recipients inside a batch run concurrently
(batch size 5). Batches run strictly one after another with a fixed pause
between them to stay under provider burst limits. Batch N+1 never starts
before every recipient of batch N has finished.

Failure isolation: every recipient records its own outcome. Nothing a
single recipient does (rate-limit denial, store failure, unexpected error)
can abort its siblings or the run. The campaign always reaches `ready`
once every pending recipient has been attempted, unless an operator
cancels it; cancellation is checked at the top of each batch and in-flight
recipients are allowed to finish.

Usage:
    service = BatchProcessingService.from_config()
    summary = await service.process_campaign(campaign_id, on_progress=print)
    await service.retry_failed_recipients(campaign_id)
"""

import asyncio
import inspect
import logging
import math
import time
from datetime import timedelta
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Tuple, Union

import logfire

from ..core.config import Config
from ..core.database import get_supabase_client
from .campaign_store import CampaignStore, StoreUnavailable
from .gemini_service import GeminiService
from .models import (
    CampaignAnalytics,
    CampaignProcessingSummary,
    CampaignStatus,
    CostEstimate,
    ProcessingResult,
    Recipient,
    RecipientStatus,
    Tier,
)
from .personalization_engine import Degraded, PersonalizationEngine, build_context, personalize_text
from .rate_limit_service import RateLimitAction, RateLimitService
from .veo_service import VeoService
from .video_render_service import SupabaseBlobStore, VideoRenderService

logger = logging.getLogger(__name__)


ProgressCallback = Callable[[int, int], Union[None, Awaitable[None]]]


class RecipientPipelineFailed(Exception):
    """An unexpected error escaped one recipient's pipeline."""

    def __init__(self, recipient_id: str, cause: BaseException):
        self.recipient_id = recipient_id
        self.cause = cause
        super().__init__(f"Recipient {recipient_id} pipeline failed: {cause}")


# ============================================================================
# Planning estimates (pure)
# ============================================================================

def estimate_campaign_time(
    recipient_count: int,
    tier: Tier,
    batch_size: int = Config.BATCH_SIZE,
    inter_batch_delay: float = Config.INTER_BATCH_DELAY_SECONDS
) -> float:
    """
    Planning estimate of total processing time in seconds.

    recipients x per-tier average + (batches - 1) x inter-batch delay.
    Not a runtime guarantee.
    """
    if recipient_count <= 0:
        return 0.0
    per_recipient = Config.TIER_SECONDS_PER_RECIPIENT[Tier(tier).value]
    pauses = math.ceil(recipient_count / batch_size) - 1
    return recipient_count * per_recipient + pauses * inter_batch_delay


def estimate_campaign_cost(recipient_count: int, tier: Tier) -> CostEstimate:
    """Flat per-video price times recipient count."""
    tier = Tier(tier)
    per_video = Config.TIER_VIDEO_COST[tier.value]
    return CostEstimate(
        recipient_count=max(0, recipient_count),
        tier=tier,
        per_video=per_video,
        total=round(max(0, recipient_count) * per_video, 4),
    )


def partition(recipients: List[Recipient], batch_size: int) -> List[List[Recipient]]:
    """Split recipients into consecutive batches of at most batch_size."""
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")
    return [recipients[i:i + batch_size] for i in range(0, len(recipients), batch_size)]


# ============================================================================
# Orchestrator
# ============================================================================

class BatchProcessingService:
    """
    Batch orchestrator for campaign personalization runs.

    All collaborators are injected; from_config() wires the production ones.
    """

    def __init__(
        self,
        store: CampaignStore,
        engine: PersonalizationEngine,
        renderer: VideoRenderService,
        rate_limiter: RateLimitService,
        batch_size: int = Config.BATCH_SIZE,
        inter_batch_delay: float = Config.INTER_BATCH_DELAY_SECONDS,
        retry_delay: float = Config.RETRY_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize BatchProcessingService.

        Args:
            store: Campaign/recipient/analytics store
            engine: Personalization asset generator
            renderer: Video render bridge
            rate_limiter: Limiter consulted before each recipient's paid work
            batch_size: Recipients processed concurrently per batch
            inter_batch_delay: Pause between batches (seconds)
            retry_delay: Spacing between recipients on the retry path (seconds)
            sleep: Awaitable sleep, injectable for tests
            clock: Monotonic clock in seconds
        """
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")

        self.store = store
        self.engine = engine
        self.renderer = renderer
        self.rate_limiter = rate_limiter
        self.batch_size = batch_size
        self.inter_batch_delay = inter_batch_delay
        self.retry_delay = retry_delay
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_config(cls, rate_limiter: Optional[RateLimitService] = None) -> "BatchProcessingService":
        """Build the service with Supabase, Gemini and Veo clients from Config."""
        supabase = get_supabase_client()
        limiter = rate_limiter or RateLimitService(limits=Config.RATE_LIMITS)
        return cls(
            store=CampaignStore(supabase),
            engine=PersonalizationEngine(GeminiService(), rate_limiter=limiter),
            renderer=VideoRenderService(VeoService(), SupabaseBlobStore(supabase)),
            rate_limiter=limiter,
        )

    # =========================================================================
    # Full campaign run
    # =========================================================================

    async def process_campaign(
        self,
        campaign_id: str,
        tier: Optional[Tier] = None,
        base_script: Optional[str] = None,
        goal: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
        caller: Optional[str] = None
    ) -> CampaignProcessingSummary:
        """
        Process every recipient currently pending for a campaign.

        Tier, base script and goal default to the campaign's own settings.

        Args:
            campaign_id: Campaign to run
            tier: Override the campaign's personalization tier
            base_script: Override the campaign's template script
            goal: Override the campaign's goal / message template
            on_progress: Called after each batch with (completed, total);
                may be sync or async
            caller: Rate-limit identity (defaults to the campaign owner)

        Returns:
            CampaignProcessingSummary for this run

        Raises:
            ValueError: If the campaign does not exist
            StoreUnavailable: If the snapshot or campaign-level writes fail
        """
        start = self._clock()
        campaign = await self.store.get_campaign(campaign_id)
        if campaign is None:
            raise ValueError(f"Campaign not found: {campaign_id}")

        tier, base_script, goal, caller = self._resolve_settings(campaign, tier, base_script, goal, caller)
        summary = CampaignProcessingSummary(campaign_id=campaign_id)

        with logfire.span("process_campaign", campaign_id=campaign_id, tier=tier.value):
            if campaign.is_cancelled:
                logger.info(f"Campaign {campaign_id} is cancelled, nothing to process")
                summary.cancelled = True
                await self.recompute_analytics(campaign_id)
                summary.total_time_ms = self._elapsed_ms(start)
                return summary

            # Snapshot: recipients added after this point wait for the next run
            recipients = await self.store.get_recipients(campaign_id, RecipientStatus.PENDING)
            summary.total = len(recipients)

            if not recipients:
                logger.info(f"Campaign {campaign_id} has no pending recipients")
                await self.recompute_analytics(campaign_id)
                summary.total_time_ms = self._elapsed_ms(start)
                return summary

            await self.store.update_campaign(campaign_id, {"processing_status": CampaignStatus.PROCESSING})

            batches = partition(recipients, self.batch_size)
            logger.info(
                f"Processing campaign {campaign_id}: {len(recipients)} recipients "
                f"in {len(batches)} batches ({tier.value})"
            )

            completed = 0
            for index, batch in enumerate(batches):
                current = await self.store.get_campaign(campaign_id)
                if current is not None and current.is_cancelled:
                    logger.info(f"Campaign {campaign_id} cancelled after {completed}/{len(recipients)} recipients")
                    summary.cancelled = True
                    break

                for result in await self._run_batch(batch, tier, base_script, goal, caller):
                    self._tally(summary, result)

                summary.batches += 1
                completed += len(batch)
                await self._report_progress(on_progress, completed, len(recipients))

                if index < len(batches) - 1:
                    await self._sleep(self.inter_batch_delay)

            if not summary.cancelled:
                await self.store.update_campaign(campaign_id, {"processing_status": CampaignStatus.READY})

            await self.recompute_analytics(campaign_id)

        summary.total_time_ms = self._elapsed_ms(start)
        logger.info(
            f"Campaign {campaign_id} run finished: {summary.successful} ready, {summary.failed} failed, "
            f"{summary.skipped} skipped, ${summary.total_cost:.3f}"
        )
        return summary

    async def _run_batch(
        self,
        batch: List[Recipient],
        tier: Tier,
        base_script: str,
        goal: str,
        caller: str
    ) -> List[ProcessingResult]:
        """Run one batch concurrently; every recipient yields exactly one result."""
        outcomes = await asyncio.gather(
            *(self._process_recipient(r, tier, base_script, goal, caller) for r in batch),
            return_exceptions=True,
        )

        results = []
        for recipient, outcome in zip(batch, outcomes):
            if isinstance(outcome, BaseException):
                error = RecipientPipelineFailed(recipient.id, outcome)
                logger.error(str(error))
                results.append(ProcessingResult(recipient_id=recipient.id, status="failed", error=str(error)))
            else:
                results.append(outcome)
        return results

    # =========================================================================
    # Retry path
    # =========================================================================

    async def retry_failed_recipients(
        self,
        campaign_id: str,
        tier: Optional[Tier] = None,
        base_script: Optional[str] = None,
        goal: Optional[str] = None,
        caller: Optional[str] = None
    ) -> CampaignProcessingSummary:
        """
        Reprocess the failed recipients of a campaign, one at a time.

        Does not change campaign status or analytics; call
        recompute_analytics() afterwards if needed.
        """
        start = self._clock()
        campaign = await self.store.get_campaign(campaign_id)
        if campaign is None:
            raise ValueError(f"Campaign not found: {campaign_id}")

        tier, base_script, goal, caller = self._resolve_settings(campaign, tier, base_script, goal, caller)
        summary = CampaignProcessingSummary(campaign_id=campaign_id)

        with logfire.span("retry_failed_recipients", campaign_id=campaign_id):
            failed = await self.store.get_recipients(campaign_id, RecipientStatus.FAILED)
            summary.total = len(failed)
            logger.info(f"Retrying {len(failed)} failed recipients for campaign {campaign_id}")

            for index, recipient in enumerate(failed):
                try:
                    result = await self._process_recipient(
                        recipient, tier, base_script, goal, caller,
                        claim_from=(RecipientStatus.FAILED,),
                    )
                except Exception as e:
                    error = RecipientPipelineFailed(recipient.id, e)
                    logger.error(str(error))
                    result = ProcessingResult(recipient_id=recipient.id, status="failed", error=str(error))
                self._tally(summary, result)

                if index < len(failed) - 1:
                    await self._sleep(self.retry_delay)

        summary.total_time_ms = self._elapsed_ms(start)
        return summary

    # =========================================================================
    # Per-recipient pipeline
    # =========================================================================

    async def _process_recipient(
        self,
        recipient: Recipient,
        tier: Tier,
        base_script: str,
        goal: str,
        caller: str,
        claim_from: Iterable[RecipientStatus] = (RecipientStatus.PENDING,)
    ) -> ProcessingResult:
        """
        Run the full pipeline for one recipient and persist its terminal state.

        Never raises for pipeline errors: any failure is recorded on the
        recipient as failed with the causing message.
        """
        claim_from = tuple(claim_from)
        start = self._clock()
        claimed = False
        cost_so_far: Optional[float] = None
        degraded_steps: List[str] = []

        with logfire.span("process_recipient", recipient_id=recipient.id, tier=tier.value):
            try:
                await self.rate_limiter.enforce(RateLimitAction.VIDEO_GENERATION, caller=caller)

                claimed = await self.store.claim_recipient(recipient.id, claim_from)
                if not claimed:
                    logger.info(f"Recipient {recipient.id} was not claimable, skipping")
                    return ProcessingResult(
                        recipient_id=recipient.id,
                        status="skipped",
                        error="Recipient no longer claimable",
                    )

                script = personalize_text(base_script, build_context(recipient))
                outcomes = await self.engine.generate_with_outcomes(recipient, tier, script, goal, caller)
                assets = [outcome.asset for outcome in outcomes]
                degraded_steps = [o.asset.name for o in outcomes if isinstance(o, Degraded)]
                cost_so_far = sum(asset.cost for asset in assets)

                await self.store.insert_assets(recipient.id, assets)

                render = await self.renderer.render(recipient, assets, script, tier)
                cost_so_far = round(cost_so_far + render.cost, 6)
                elapsed_ms = self._elapsed_ms(start)

                await self.store.update_recipient(recipient.id, {
                    "status": RecipientStatus.READY,
                    "personalized_video_url": render.url,
                    "generation_cost": cost_so_far,
                    "processing_time_ms": elapsed_ms,
                    "error_message": None,
                })

                return ProcessingResult(
                    recipient_id=recipient.id,
                    status="success",
                    video_url=render.url,
                    cost=cost_so_far,
                    processing_time_ms=elapsed_ms,
                    degraded_steps=degraded_steps,
                )

            except Exception as e:
                return await self._record_failure(
                    recipient, e, start, cost_so_far, claimed, claim_from, degraded_steps
                )

    async def _record_failure(
        self,
        recipient: Recipient,
        error: Exception,
        start: float,
        cost_so_far: Optional[float],
        claimed: bool,
        claim_from: Tuple[RecipientStatus, ...],
        degraded_steps: List[str]
    ) -> ProcessingResult:
        message = str(error) or type(error).__name__
        elapsed_ms = self._elapsed_ms(start)
        logger.error(f"Recipient {recipient.id} failed: {message}")

        updates: dict = {
            "status": RecipientStatus.FAILED,
            "error_message": message,
            "processing_time_ms": elapsed_ms,
        }
        if cost_so_far is not None:
            updates["generation_cost"] = round(cost_so_far, 6)

        try:
            # Unclaimed rows only move to failed if nobody changed them meanwhile
            expected = None if claimed else claim_from
            await self.store.update_recipient(recipient.id, updates, expected_statuses=expected)
        except StoreUnavailable as write_error:
            logger.error(f"Could not record failure for recipient {recipient.id}: {write_error}")

        return ProcessingResult(
            recipient_id=recipient.id,
            status="failed",
            cost=cost_so_far or 0.0,
            processing_time_ms=elapsed_ms,
            error=message,
            degraded_steps=degraded_steps,
        )

    # =========================================================================
    # Analytics & maintenance
    # =========================================================================

    async def recompute_analytics(self, campaign_id: str) -> CampaignAnalytics:
        """
        Recompute campaign analytics from the full recipient set.

        videos_generated counts ready recipients plus failed recipients that
        still incurred cost; total_cost is the sum of every recipient's
        generation_cost. Both are recomputed, never incremented.
        """
        recipients = await self.store.get_recipients(campaign_id)

        ready = sum(1 for r in recipients if r.status == RecipientStatus.READY)
        partial = sum(
            1 for r in recipients
            if r.status == RecipientStatus.FAILED and r.generation_cost > 0
        )
        total_cost = round(sum(r.generation_cost for r in recipients), 6)

        updates = {"videos_generated": ready + partial, "total_cost": total_cost}
        await self.store.update_campaign_analytics(campaign_id, updates)

        current = await self.store.get_campaign_analytics(campaign_id)
        if current is None:
            return CampaignAnalytics(campaign_id=campaign_id, **updates)
        return current.model_copy(update=updates)

    async def reconcile_stale_claims(
        self,
        campaign_id: str,
        older_than: Optional[timedelta] = None
    ) -> int:
        """Requeue recipients stuck in processing longer than the claim lease."""
        lease = older_than or timedelta(minutes=Config.STALE_CLAIM_MINUTES)
        return await self.store.requeue_stale_claims(campaign_id, lease)

    def estimate_time(self, recipient_count: int, tier: Tier) -> float:
        """Planning estimate in seconds using this service's batch settings."""
        return estimate_campaign_time(recipient_count, tier, self.batch_size, self.inter_batch_delay)

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _resolve_settings(
        campaign: Any,
        tier: Optional[Tier],
        base_script: Optional[str],
        goal: Optional[str],
        caller: Optional[str]
    ) -> Tuple[Tier, str, str, str]:
        return (
            Tier(tier or campaign.personalization_tier),
            base_script if base_script is not None else (campaign.template_script or ""),
            goal or campaign.message_template or Config.DEFAULT_GOAL,
            caller or campaign.user_id or "system",
        )

    @staticmethod
    def _tally(summary: CampaignProcessingSummary, result: ProcessingResult) -> None:
        summary.results.append(result)
        if result.status == "success":
            summary.successful += 1
        elif result.status == "skipped":
            summary.skipped += 1
        else:
            summary.failed += 1
        summary.total_cost = round(summary.total_cost + result.cost, 6)

    @staticmethod
    async def _report_progress(on_progress: Optional[ProgressCallback], completed: int, total: int) -> None:
        if on_progress is None:
            return
        try:
            outcome = on_progress(completed, total)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning(f"Progress callback failed (non-fatal): {e}")

    def _elapsed_ms(self, start: float) -> int:
        return max(0, int((self._clock() - start) * 1000))
