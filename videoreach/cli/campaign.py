"""
Campaign CLI Commands

Commands for running, retrying, estimating and maintaining campaign batches.
"""

import asyncio
import logging
from datetime import timedelta
from pathlib import Path
from typing import Optional

import click
from tqdm import tqdm

from ..core.config import Config
from ..core.database import get_supabase_client
from ..services.batch_processing_service import (
    BatchProcessingService,
    estimate_campaign_cost,
    estimate_campaign_time,
)
from ..services.campaign_store import CampaignStore, StoreUnavailable, parse_recipients_csv
from ..services.models import CampaignProcessingSummary, RecipientStatus, Tier


logger = logging.getLogger(__name__)

TIER_CHOICES = click.Choice([t.value for t in Tier])


def _print_summary(summary: CampaignProcessingSummary) -> None:
    click.echo()
    click.echo("=" * 60)
    click.echo("📊 Summary")
    click.echo("=" * 60)
    click.echo(f"   Recipients: {summary.total}")
    click.echo(f"   ✓ Ready:    {summary.successful}")
    click.echo(f"   ✗ Failed:   {summary.failed}")
    if summary.skipped:
        click.echo(f"   ↷ Skipped:  {summary.skipped}")
    click.echo(f"   Batches:    {summary.batches}")
    click.echo(f"   Cost:       ${summary.total_cost:.3f}")
    click.echo(f"   Time:       {summary.total_time_ms / 1000:.1f}s")
    if summary.cancelled:
        click.echo(click.style("   Campaign was cancelled before all batches ran", fg='yellow'))

    failures = [r for r in summary.results if r.status == "failed"]
    for result in failures[:10]:
        click.echo(f"   - {result.recipient_id}: {result.error}")
    if len(failures) > 10:
        click.echo(f"   ... and {len(failures) - 10} more")


@click.command(name="process")
@click.argument('campaign_id')
@click.option('--tier', type=TIER_CHOICES, default=None, help='Override the campaign personalization tier')
@click.option('--goal', default=None, help='Override the campaign goal used for CTAs')
def process_command(campaign_id: str, tier: Optional[str], goal: Optional[str]):
    """
    Process every pending recipient of a campaign.

    Examples:
        videoreach process 5f0c...
        videoreach process 5f0c... --tier smart --goal "Book a demo"
    """
    click.echo("=" * 60)
    click.echo("🎬 Campaign Processor")
    click.echo("=" * 60)

    service = BatchProcessingService.from_config()
    progress = tqdm(total=0, desc="Recipients", unit="recipient")

    def on_progress(completed: int, total: int) -> None:
        progress.total = total
        progress.update(completed - progress.n)

    try:
        summary = asyncio.run(service.process_campaign(
            campaign_id,
            tier=Tier(tier) if tier else None,
            goal=goal,
            on_progress=on_progress,
        ))
    except (ValueError, StoreUnavailable) as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()
    finally:
        progress.close()

    _print_summary(summary)


@click.command(name="retry")
@click.argument('campaign_id')
def retry_command(campaign_id: str):
    """
    Retry the failed recipients of a campaign, one at a time.

    Example:
        videoreach retry 5f0c...
    """
    service = BatchProcessingService.from_config()

    async def _retry():
        summary = await service.retry_failed_recipients(campaign_id)
        await service.recompute_analytics(campaign_id)
        return summary

    try:
        summary = asyncio.run(_retry())
    except (ValueError, StoreUnavailable) as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()

    _print_summary(summary)


@click.command(name="estimate")
@click.option('--campaign-id', default=None, help='Estimate for the pending recipients of a campaign')
@click.option('--count', type=int, default=None, help='Number of recipients (when no campaign is given)')
@click.option('--tier', type=TIER_CHOICES, default=None, help='Personalization tier')
def estimate_command(campaign_id: Optional[str], count: Optional[int], tier: Optional[str]):
    """
    Estimate time and cost before launching a campaign.

    Examples:
        videoreach estimate --count 250 --tier smart
        videoreach estimate --campaign-id 5f0c...
    """
    if campaign_id:
        store = CampaignStore(get_supabase_client())

        async def _load():
            campaign = await store.get_campaign(campaign_id)
            pending = await store.get_recipients(campaign_id, RecipientStatus.PENDING)
            return campaign, len(pending)

        campaign, pending_count = asyncio.run(_load())
        if campaign is None:
            click.echo(f"❌ Error: Campaign '{campaign_id}' not found", err=True)
            raise click.Abort()
        count = pending_count if count is None else count
        tier = tier or campaign.personalization_tier.value

    if count is None:
        click.echo("❌ Error: pass --count or --campaign-id", err=True)
        raise click.Abort()

    tier_value = Tier(tier or Tier.BASIC.value)
    seconds = estimate_campaign_time(count, tier_value)
    cost = estimate_campaign_cost(count, tier_value)

    click.echo(f"Recipients: {count}")
    click.echo(f"Tier:       {tier_value.value}")
    click.echo(f"Time:       ~{seconds / 60:.1f} min ({seconds:.0f}s)")
    click.echo(f"Cost:       ${cost.total:.2f} (${cost.per_video:.2f} per video)")


@click.command(name="reconcile")
@click.argument('campaign_id')
@click.option('--minutes', type=int, default=Config.STALE_CLAIM_MINUTES, help='Claim lease in minutes')
def reconcile_command(campaign_id: str, minutes: int):
    """
    Requeue recipients stuck in processing after a crash, then recompute analytics.

    Example:
        videoreach reconcile 5f0c... --minutes 30
    """
    service = BatchProcessingService.from_config()

    async def _reconcile():
        requeued = await service.reconcile_stale_claims(campaign_id, timedelta(minutes=minutes))
        analytics = await service.recompute_analytics(campaign_id)
        return requeued, analytics

    try:
        requeued, analytics = asyncio.run(_reconcile())
    except StoreUnavailable as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()

    click.echo(f"✅ Requeued {requeued} stale recipients")
    click.echo(f"   Videos generated: {analytics.videos_generated}")
    click.echo(f"   Total cost:       ${analytics.total_cost:.3f}")


@click.command(name="cancel")
@click.argument('campaign_id')
@click.confirmation_option(prompt='Cancel this campaign? Pending recipients will not be processed.')
def cancel_command(campaign_id: str):
    """
    Cancel a campaign. Recipients already in flight finish normally.

    Example:
        videoreach cancel 5f0c...
    """
    store = CampaignStore(get_supabase_client())
    try:
        cancelled = asyncio.run(store.cancel_campaign(campaign_id))
    except StoreUnavailable as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()

    click.echo(f"✅ Campaign cancelled ({cancelled} pending recipients)")


@click.command(name="import-recipients")
@click.argument('campaign_id')
@click.argument('file', type=click.Path(exists=True, path_type=Path))
def import_recipients_command(campaign_id: str, file: Path):
    """
    Import recipients from a CSV file (needs email and first name columns).

    Example:
        videoreach import-recipients 5f0c... ./leads.csv
    """
    recipients = parse_recipients_csv(file.read_text(encoding='utf-8'))
    if not recipients:
        click.echo("❌ No valid recipients found in CSV", err=True)
        raise click.Abort()

    click.echo(f"Found {len(recipients)} recipients in {file.name}")

    store = CampaignStore(get_supabase_client())
    try:
        created = asyncio.run(store.add_recipients(campaign_id, recipients))
    except StoreUnavailable as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()

    click.echo(f"✅ Added {created} recipients")
