"""
CampaignStore - Supabase-backed store for campaigns, recipients, assets and analytics.

Owns the partial-update and filtered-query contracts the batch orchestrator
depends on:
- every update is partial (only supplied fields change) and stamps updated_at
- every read returns the full current row
- a recipient is claimed with a conditional write, so two workers can never
  both own the same row

Every Supabase failure is raised as StoreUnavailable. Nothing here swallows
errors; the caller decides the scope at which a failure is fatal.

Usage:
    from videoreach.services.campaign_store import CampaignStore
    from videoreach.core.database import get_supabase_client

    store = CampaignStore(get_supabase_client())
    pending = await store.get_recipients(campaign_id, RecipientStatus.PENDING)
"""

import asyncio
import csv
import io
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError
from supabase import Client

from ..core.database import utc_now_iso
from .models import (
    Campaign,
    CampaignAnalytics,
    CampaignCreate,
    CampaignStatus,
    GeneratedAsset,
    Recipient,
    RecipientCreate,
    RecipientStatus,
)

logger = logging.getLogger(__name__)


CAMPAIGNS_TABLE = "campaigns"
RECIPIENTS_TABLE = "campaign_recipients"
ANALYTICS_TABLE = "campaign_analytics"
ASSETS_TABLE = "personalization_assets"

# CSV header aliases -> recipient field
CSV_HEADER_ALIASES = {
    "email": "email",
    "first_name": "first_name",
    "firstname": "first_name",
    "first name": "first_name",
    "last_name": "last_name",
    "lastname": "last_name",
    "last name": "last_name",
    "company": "company",
    "role": "role",
    "title": "role",
    "job_title": "role",
    "industry": "industry",
    "pain_point": "pain_point",
    "painpoint": "pain_point",
    "pain point": "pain_point",
}


class StoreUnavailable(Exception):
    """Raised when a read or write against the persistent store fails."""

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Store unavailable during {operation}: {cause}")


class CampaignStore:
    """
    Typed CRUD over campaign, recipient, asset and analytics rows.

    The Supabase client is synchronous; every call runs in a worker thread
    so that concurrent recipients in a batch do not block the event loop.
    """

    def __init__(self, supabase_client: Client):
        """
        Initialize CampaignStore.

        Args:
            supabase_client: Supabase client instance
        """
        self.client = supabase_client

    async def _execute(self, operation: str, build: Callable[[], Any]) -> Any:
        """Run a query builder in a thread, mapping any failure to StoreUnavailable."""
        try:
            return await asyncio.to_thread(lambda: build().execute())
        except Exception as e:
            logger.error(f"Store operation {operation} failed: {e}")
            raise StoreUnavailable(operation, e) from e

    # =========================================================================
    # Campaigns
    # =========================================================================

    async def create_campaign(self, user_id: str, data: CampaignCreate) -> Campaign:
        """
        Create a campaign in draft together with its zeroed analytics row.

        Args:
            user_id: Owning user
            data: Campaign definition

        Returns:
            The created Campaign
        """
        result = await self._execute(
            "create_campaign",
            lambda: self.client.table(CAMPAIGNS_TABLE).insert({
                "user_id": user_id,
                "name": data.name,
                "personalization_tier": data.personalization_tier.value,
                "template_script": data.template_script,
                "message_template": data.message_template,
                "master_video_id": data.master_video_id,
                "subject": data.subject,
                "processing_status": CampaignStatus.DRAFT.value,
                "total_recipients": 0,
            }),
        )
        campaign = Campaign(**result.data[0])

        await self._execute(
            "create_campaign_analytics",
            lambda: self.client.table(ANALYTICS_TABLE).insert(
                CampaignAnalytics(campaign_id=campaign.id).model_dump()
            ),
        )
        logger.info(f"Created campaign {campaign.id} ({campaign.personalization_tier.value})")
        return campaign

    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        """Fetch a campaign row, or None if it does not exist."""
        result = await self._execute(
            "get_campaign",
            lambda: self.client.table(CAMPAIGNS_TABLE)
                .select("*")
                .eq("id", campaign_id)
                .limit(1),
        )
        if not result.data:
            return None
        return Campaign(**result.data[0])

    async def update_campaign(self, campaign_id: str, updates: Dict[str, Any]) -> None:
        """Partially update a campaign row."""
        payload = {**_serialize(updates), "updated_at": utc_now_iso()}
        await self._execute(
            "update_campaign",
            lambda: self.client.table(CAMPAIGNS_TABLE).update(payload).eq("id", campaign_id),
        )

    async def cancel_campaign(self, campaign_id: str) -> int:
        """
        Cancel a campaign and every recipient still pending.

        Recipients already claimed are left alone and finish normally.

        Returns:
            Number of recipients moved to cancelled
        """
        await self.update_campaign(campaign_id, {"processing_status": CampaignStatus.CANCELLED})
        result = await self._execute(
            "cancel_recipients",
            lambda: self.client.table(RECIPIENTS_TABLE)
                .update({"status": RecipientStatus.CANCELLED.value, "updated_at": utc_now_iso()})
                .eq("campaign_id", campaign_id)
                .eq("status", RecipientStatus.PENDING.value),
        )
        cancelled = len(result.data or [])
        logger.info(f"Cancelled campaign {campaign_id} ({cancelled} pending recipients)")
        return cancelled

    # =========================================================================
    # Recipients
    # =========================================================================

    async def add_recipients(self, campaign_id: str, recipients: List[RecipientCreate]) -> int:
        """
        Bulk-insert recipients as pending.

        total_recipients on the campaign and its analytics row is advanced by
        the number of rows actually created.

        Returns:
            Number of recipient rows created
        """
        if not recipients:
            return 0

        records = [
            {**r.model_dump(), "campaign_id": campaign_id, "status": RecipientStatus.PENDING.value}
            for r in recipients
        ]
        result = await self._execute(
            "add_recipients",
            lambda: self.client.table(RECIPIENTS_TABLE).insert(records),
        )
        created = len(result.data or [])

        campaign = await self.get_campaign(campaign_id)
        total = (campaign.total_recipients if campaign else 0) + created
        await self.update_campaign(campaign_id, {"total_recipients": total})
        await self.update_campaign_analytics(campaign_id, {"total_recipients": total})

        logger.info(f"Added {created} recipients to campaign {campaign_id}")
        return created

    async def get_recipients(
        self,
        campaign_id: str,
        status: Optional[RecipientStatus] = None
    ) -> List[Recipient]:
        """
        List recipients of a campaign, oldest first.

        Args:
            campaign_id: Campaign ID
            status: Optional status filter

        Returns:
            List of Recipient rows
        """
        def build():
            query = self.client.table(RECIPIENTS_TABLE).select("*").eq("campaign_id", campaign_id)
            if status is not None:
                query = query.eq("status", RecipientStatus(status).value)
            return query.order("created_at", desc=False)

        result = await self._execute("get_recipients", build)
        return [Recipient(**row) for row in result.data or []]

    async def get_recipient(self, recipient_id: str) -> Optional[Recipient]:
        """Fetch a single recipient row."""
        result = await self._execute(
            "get_recipient",
            lambda: self.client.table(RECIPIENTS_TABLE).select("*").eq("id", recipient_id).limit(1),
        )
        if not result.data:
            return None
        return Recipient(**result.data[0])

    async def update_recipient(
        self,
        recipient_id: str,
        updates: Dict[str, Any],
        expected_statuses: Optional[Iterable[RecipientStatus]] = None
    ) -> bool:
        """
        Partially update a recipient row.

        Args:
            recipient_id: Recipient ID
            updates: Fields to change
            expected_statuses: If given, only update while the row is in one of these

        Returns:
            True if a row was updated
        """
        payload = {**_serialize(updates), "updated_at": utc_now_iso()}

        def build():
            query = self.client.table(RECIPIENTS_TABLE).update(payload).eq("id", recipient_id)
            if expected_statuses is not None:
                query = query.in_("status", [RecipientStatus(s).value for s in expected_statuses])
            return query

        result = await self._execute("update_recipient", build)
        return bool(result.data)

    async def claim_recipient(
        self,
        recipient_id: str,
        from_statuses: Iterable[RecipientStatus] = (RecipientStatus.PENDING,)
    ) -> bool:
        """
        Mark a recipient processing, only if it is currently in one of from_statuses.

        The claim writes claimed_at as a lease timestamp for the stale-claim sweep.

        Returns:
            True if this caller now owns the recipient
        """
        allowed = [RecipientStatus(s).value for s in from_statuses]
        now = utc_now_iso()
        result = await self._execute(
            "claim_recipient",
            lambda: self.client.table(RECIPIENTS_TABLE)
                .update({
                    "status": RecipientStatus.PROCESSING.value,
                    "claimed_at": now,
                    "error_message": None,
                    "updated_at": now,
                })
                .eq("id", recipient_id)
                .in_("status", allowed),
        )
        return bool(result.data)

    async def requeue_stale_claims(
        self,
        campaign_id: str,
        older_than: timedelta
    ) -> int:
        """
        Reset processing recipients whose claim is older than the lease threshold.

        A crash mid-batch leaves rows processing; this puts them back to
        pending so the next run picks them up.

        Returns:
            Number of recipients requeued
        """
        cutoff = (datetime.now(timezone.utc) - older_than).isoformat()
        result = await self._execute(
            "requeue_stale_claims",
            lambda: self.client.table(RECIPIENTS_TABLE)
                .update({
                    "status": RecipientStatus.PENDING.value,
                    "claimed_at": None,
                    "updated_at": utc_now_iso(),
                })
                .eq("campaign_id", campaign_id)
                .eq("status", RecipientStatus.PROCESSING.value)
                .lt("claimed_at", cutoff),
        )
        requeued = len(result.data or [])
        if requeued:
            logger.warning(f"Requeued {requeued} stale claims for campaign {campaign_id}")
        return requeued

    # =========================================================================
    # Assets
    # =========================================================================

    async def insert_assets(self, recipient_id: str, assets: List[GeneratedAsset]) -> None:
        """Append asset rows for a recipient. Existing rows are never touched."""
        if not assets:
            return
        records = [
            {
                "recipient_id": recipient_id,
                "asset_type": asset.type.value,
                "asset_name": asset.name,
                "asset_url": asset.url,
                "asset_data": asset.data,
                "prompt_used": asset.prompt,
                "generation_time_ms": asset.generation_time_ms,
                "cost": asset.cost,
                "degraded": asset.degraded,
            }
            for asset in assets
        ]
        await self._execute(
            "insert_assets",
            lambda: self.client.table(ASSETS_TABLE).insert(records),
        )

    async def get_assets(self, recipient_id: str) -> List[GeneratedAsset]:
        """All asset rows recorded for a recipient, across every run."""
        result = await self._execute(
            "get_assets",
            lambda: self.client.table(ASSETS_TABLE).select("*").eq("recipient_id", recipient_id),
        )
        return [
            GeneratedAsset(
                type=row["asset_type"],
                name=row.get("asset_name") or row["asset_type"],
                data=row.get("asset_data") or {},
                prompt=row.get("prompt_used") or "",
                url=row.get("asset_url"),
                generation_time_ms=row.get("generation_time_ms") or 0,
                cost=row.get("cost") or 0.0,
                degraded=bool(row.get("degraded")),
            )
            for row in result.data or []
        ]

    # =========================================================================
    # Analytics
    # =========================================================================

    async def get_campaign_analytics(self, campaign_id: str) -> Optional[CampaignAnalytics]:
        """Fetch the analytics row for a campaign."""
        result = await self._execute(
            "get_campaign_analytics",
            lambda: self.client.table(ANALYTICS_TABLE).select("*").eq("campaign_id", campaign_id).limit(1),
        )
        if not result.data:
            return None
        return CampaignAnalytics(**result.data[0])

    async def update_campaign_analytics(self, campaign_id: str, updates: Dict[str, Any]) -> None:
        """Partially update the analytics row for a campaign."""
        payload = {**_serialize(updates), "updated_at": utc_now_iso()}
        await self._execute(
            "update_campaign_analytics",
            lambda: self.client.table(ANALYTICS_TABLE).update(payload).eq("campaign_id", campaign_id),
        )


def _serialize(updates: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten enums and datetimes so the payload is JSON-ready."""
    payload = {}
    for key, value in updates.items():
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, datetime):
            value = value.isoformat()
        payload[key] = value
    return payload


def parse_recipients_csv(csv_text: str) -> List[RecipientCreate]:
    """
    Parse a recipient CSV export.

    Headers are matched case-insensitively against CSV_HEADER_ALIASES.
    Rows without an email or first name, or that fail validation, are
    skipped. Columns that are not recipient fields are kept in custom_fields.

    Args:
        csv_text: Raw CSV text with a header row

    Returns:
        List of RecipientCreate rows ready for CampaignStore.add_recipients
    """
    reader = csv.reader(io.StringIO(csv_text.strip()))
    rows = list(reader)
    if len(rows) < 2:
        return []

    headers = [h.strip().lower() for h in rows[0]]
    if "email" not in [CSV_HEADER_ALIASES.get(h) for h in headers] or \
            "first_name" not in [CSV_HEADER_ALIASES.get(h) for h in headers]:
        logger.warning("CSV is missing an email or first name column")
        return []

    recipients = []
    for line_number, values in enumerate(rows[1:], start=2):
        fields: Dict[str, Any] = {}
        custom: Dict[str, Any] = {}
        for header, value in zip(headers, values):
            value = value.strip()
            field = CSV_HEADER_ALIASES.get(header)
            if field:
                if value and field not in fields:
                    fields[field] = value
            elif header:
                custom[header] = value

        if not fields.get("email") or not fields.get("first_name"):
            continue

        try:
            recipients.append(RecipientCreate(**fields, custom_fields=custom))
        except ValidationError as e:
            logger.warning(f"Skipping invalid CSV row {line_number}: {e.error_count()} validation error(s)")

    return recipients
