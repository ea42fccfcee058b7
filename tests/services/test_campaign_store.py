"""
Tests for CampaignStore: query shapes against a mocked Supabase client,
conditional claims, partial updates, StoreUnavailable mapping, and CSV
recipient parsing.

All database calls are mocked: no real DB connection needed.
"""

from datetime import timedelta

import pytest
from unittest.mock import MagicMock

from videoreach.services.campaign_store import (
    ANALYTICS_TABLE,
    ASSETS_TABLE,
    CAMPAIGNS_TABLE,
    RECIPIENTS_TABLE,
    CampaignStore,
    StoreUnavailable,
    parse_recipients_csv,
)
from videoreach.services.models import (
    AssetType,
    CampaignCreate,
    CampaignStatus,
    GeneratedAsset,
    RecipientCreate,
    RecipientStatus,
    Tier,
)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def store():
    return CampaignStore(MagicMock())


def _make_execute_result(data=None):
    """Create a mock execute() result."""
    result = MagicMock()
    result.data = data or []
    return result


CAMPAIGN_ROW = {
    "id": "camp-1",
    "user_id": "user-1",
    "name": "Q3 outreach",
    "personalization_tier": "smart",
    "template_script": "Hi {{firstName}}",
    "message_template": None,
    "processing_status": "draft",
    "total_recipients": 3,
    "some_new_column": "ignored",
}

RECIPIENT_ROW = {
    "id": "rec-1",
    "campaign_id": "camp-1",
    "email": "ada@example.com",
    "first_name": "Ada",
    "status": "pending",
    "custom_fields": None,
    "generation_cost": None,
}


# ============================================================================
# Campaigns
# ============================================================================

class TestCampaigns:
    @pytest.mark.asyncio
    async def test_get_campaign(self, store):
        table = store.client.table.return_value
        table.select.return_value.eq.return_value.limit.return_value.execute.return_value = \
            _make_execute_result([CAMPAIGN_ROW])

        campaign = await store.get_campaign("camp-1")

        store.client.table.assert_called_with(CAMPAIGNS_TABLE)
        table.select.return_value.eq.assert_called_with("id", "camp-1")
        assert campaign.personalization_tier == Tier.SMART
        assert campaign.message_template == ""
        assert campaign.is_cancelled is False

    @pytest.mark.asyncio
    async def test_get_campaign_missing(self, store):
        table = store.client.table.return_value
        table.select.return_value.eq.return_value.limit.return_value.execute.return_value = \
            _make_execute_result([])
        assert await store.get_campaign("nope") is None

    @pytest.mark.asyncio
    async def test_update_campaign_is_partial_and_serialized(self, store):
        table = store.client.table.return_value

        await store.update_campaign("camp-1", {"processing_status": CampaignStatus.READY})

        payload = table.update.call_args.args[0]
        assert payload["processing_status"] == "ready"
        assert "updated_at" in payload
        assert set(payload) == {"processing_status", "updated_at"}
        table.update.return_value.eq.assert_called_with("id", "camp-1")

    @pytest.mark.asyncio
    async def test_create_campaign_inserts_analytics_row(self, store):
        table = store.client.table.return_value
        table.insert.return_value.execute.return_value = _make_execute_result([CAMPAIGN_ROW])

        campaign = await store.create_campaign("user-1", CampaignCreate(name="Q3 outreach", personalization_tier=Tier.SMART))

        assert campaign.id == "camp-1"
        first_insert = table.insert.call_args_list[0].args[0]
        assert first_insert["processing_status"] == "draft"
        assert first_insert["personalization_tier"] == "smart"
        analytics_insert = table.insert.call_args_list[1].args[0]
        assert analytics_insert["campaign_id"] == "camp-1"
        assert analytics_insert["total_cost"] == 0.0
        assert [c.args[0] for c in store.client.table.call_args_list] == [CAMPAIGNS_TABLE, ANALYTICS_TABLE]

    @pytest.mark.asyncio
    async def test_cancel_campaign_cancels_pending_only(self, store):
        table = store.client.table.return_value
        cancel_chain = table.update.return_value.eq.return_value.eq.return_value
        cancel_chain.execute.return_value = _make_execute_result([{"id": "a"}, {"id": "b"}])

        cancelled = await store.cancel_campaign("camp-1")

        assert cancelled == 2
        table.update.return_value.eq.return_value.eq.assert_called_with("status", "pending")
        statuses = [c.args[0].get("processing_status") or c.args[0].get("status") for c in table.update.call_args_list]
        assert statuses == ["cancelled", "cancelled"]


# ============================================================================
# Recipients
# ============================================================================

class TestRecipients:
    @pytest.mark.asyncio
    async def test_get_recipients_with_status_filter(self, store):
        table = store.client.table.return_value
        chain = table.select.return_value.eq.return_value.eq.return_value
        chain.order.return_value.execute.return_value = _make_execute_result([RECIPIENT_ROW])

        recipients = await store.get_recipients("camp-1", RecipientStatus.PENDING)

        table.select.return_value.eq.assert_called_with("campaign_id", "camp-1")
        table.select.return_value.eq.return_value.eq.assert_called_with("status", "pending")
        chain.order.assert_called_with("created_at", desc=False)
        assert len(recipients) == 1
        assert recipients[0].custom_fields == {}
        assert recipients[0].generation_cost == 0.0

    @pytest.mark.asyncio
    async def test_get_recipients_without_filter(self, store):
        table = store.client.table.return_value
        table.select.return_value.eq.return_value.order.return_value.execute.return_value = \
            _make_execute_result([RECIPIENT_ROW, {**RECIPIENT_ROW, "id": "rec-2"}])

        recipients = await store.get_recipients("camp-1")

        assert [r.id for r in recipients] == ["rec-1", "rec-2"]
        table.select.return_value.eq.return_value.eq.assert_not_called()

    @pytest.mark.asyncio
    async def test_claim_is_conditional(self, store):
        table = store.client.table.return_value
        chain = table.update.return_value.eq.return_value
        chain.in_.return_value.execute.return_value = _make_execute_result([RECIPIENT_ROW])

        claimed = await store.claim_recipient("rec-1")

        assert claimed is True
        payload = table.update.call_args.args[0]
        assert payload["status"] == "processing"
        assert payload["claimed_at"]
        chain.in_.assert_called_with("status", ["pending"])

    @pytest.mark.asyncio
    async def test_claim_refused_when_row_moved(self, store):
        table = store.client.table.return_value
        table.update.return_value.eq.return_value.in_.return_value.execute.return_value = \
            _make_execute_result([])
        assert await store.claim_recipient("rec-1", [RecipientStatus.FAILED]) is False
        table.update.return_value.eq.return_value.in_.assert_called_with("status", ["failed"])

    @pytest.mark.asyncio
    async def test_update_recipient_with_expected_status(self, store):
        table = store.client.table.return_value
        table.update.return_value.eq.return_value.in_.return_value.execute.return_value = \
            _make_execute_result([RECIPIENT_ROW])

        updated = await store.update_recipient(
            "rec-1", {"status": RecipientStatus.FAILED}, expected_statuses=[RecipientStatus.PENDING]
        )

        assert updated is True
        table.update.return_value.eq.return_value.in_.assert_called_with("status", ["pending"])

    @pytest.mark.asyncio
    async def test_update_recipient_unconditional(self, store):
        table = store.client.table.return_value
        table.update.return_value.eq.return_value.execute.return_value = _make_execute_result([RECIPIENT_ROW])

        await store.update_recipient("rec-1", {"generation_cost": 0.07})

        table.update.return_value.eq.return_value.in_.assert_not_called()
        assert table.update.call_args.args[0]["generation_cost"] == 0.07

    @pytest.mark.asyncio
    async def test_add_recipients_advances_total(self, store):
        table = store.client.table.return_value
        table.insert.return_value.execute.return_value = _make_execute_result([{"id": "a"}, {"id": "b"}])
        table.select.return_value.eq.return_value.limit.return_value.execute.return_value = \
            _make_execute_result([CAMPAIGN_ROW])

        created = await store.add_recipients("camp-1", [
            RecipientCreate(email="a@x.com", first_name="A"),
            RecipientCreate(email="b@x.com", first_name="B"),
        ])

        assert created == 2
        records = table.insert.call_args.args[0]
        assert all(r["status"] == "pending" and r["campaign_id"] == "camp-1" for r in records)
        totals = [c.args[0]["total_recipients"] for c in table.update.call_args_list]
        assert totals == [5, 5]

    @pytest.mark.asyncio
    async def test_add_no_recipients(self, store):
        assert await store.add_recipients("camp-1", []) == 0
        store.client.table.assert_not_called()

    @pytest.mark.asyncio
    async def test_requeue_stale_claims(self, store):
        table = store.client.table.return_value
        chain = table.update.return_value.eq.return_value.eq.return_value
        chain.lt.return_value.execute.return_value = _make_execute_result([{"id": "a"}])

        requeued = await store.requeue_stale_claims("camp-1", timedelta(minutes=30))

        assert requeued == 1
        assert table.update.call_args.args[0]["status"] == "pending"
        table.update.return_value.eq.return_value.eq.assert_called_with("status", "processing")
        assert chain.lt.call_args.args[0] == "claimed_at"


# ============================================================================
# Assets & analytics
# ============================================================================

class TestAssetsAndAnalytics:
    @pytest.mark.asyncio
    async def test_insert_assets(self, store):
        table = store.client.table.return_value
        assets = [
            GeneratedAsset(type=AssetType.INTRO, name="intro", data={"text": "Hi"}, prompt="p", cost=0.001),
            GeneratedAsset(type=AssetType.CTA, name="cta", data={"text": "Learn More"}, degraded=True),
        ]

        await store.insert_assets("rec-1", assets)

        store.client.table.assert_called_with(ASSETS_TABLE)
        records = table.insert.call_args.args[0]
        assert records[0]["asset_type"] == "intro"
        assert records[0]["prompt_used"] == "p"
        assert records[1]["degraded"] is True
        assert all(r["recipient_id"] == "rec-1" for r in records)

    @pytest.mark.asyncio
    async def test_insert_no_assets_is_noop(self, store):
        await store.insert_assets("rec-1", [])
        store.client.table.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_assets(self, store):
        table = store.client.table.return_value
        table.select.return_value.eq.return_value.execute.return_value = _make_execute_result([
            {"asset_type": "cta", "asset_name": "pain_point_cta", "asset_data": {"text": "Go"}, "cost": 0.002},
        ])

        assets = await store.get_assets("rec-1")

        assert assets[0].type == AssetType.CTA
        assert assets[0].name == "pain_point_cta"
        assert assets[0].cost == 0.002

    @pytest.mark.asyncio
    async def test_update_analytics(self, store):
        table = store.client.table.return_value
        await store.update_campaign_analytics("camp-1", {"videos_generated": 4, "total_cost": 0.2})
        store.client.table.assert_called_with(ANALYTICS_TABLE)
        table.update.return_value.eq.assert_called_with("campaign_id", "camp-1")


# ============================================================================
# Errors
# ============================================================================

class TestErrors:
    @pytest.mark.asyncio
    async def test_failures_raise_store_unavailable(self, store):
        store.client.table.return_value.update.return_value.eq.return_value.execute.side_effect = \
            ConnectionError("connection reset")

        with pytest.raises(StoreUnavailable) as exc_info:
            await store.update_recipient("rec-1", {"status": "ready"})

        assert exc_info.value.operation == "update_recipient"
        assert isinstance(exc_info.value.cause, ConnectionError)


# ============================================================================
# CSV parsing
# ============================================================================

class TestParseRecipientsCsv:
    def test_header_aliases_and_custom_fields(self):
        csv_text = (
            "Email,First Name,LastName,Company,Title,Industry,Pain Point,City\n"
            "ada@example.com,Ada,Lovelace,AE,CTO,SaaS,slow onboarding,London\n"
        )
        recipients = parse_recipients_csv(csv_text)
        assert len(recipients) == 1
        r = recipients[0]
        assert (r.email, r.first_name, r.last_name, r.role) == ("ada@example.com", "Ada", "Lovelace", "CTO")
        assert r.pain_point == "slow onboarding"
        assert r.custom_fields == {"city": "London"}

    def test_rows_missing_required_fields_skipped(self):
        csv_text = "email,first_name\nada@example.com,Ada\n,Bob\ncarol@example.com,\n"
        assert [r.first_name for r in parse_recipients_csv(csv_text)] == ["Ada"]

    def test_missing_required_column(self):
        assert parse_recipients_csv("email,company\na@x.com,AE\n") == []

    def test_header_only(self):
        assert parse_recipients_csv("email,first_name\n") == []

    def test_quoted_values(self):
        csv_text = 'email,first_name,company\nada@example.com,Ada,"Engines, Inc."\n'
        assert parse_recipients_csv(csv_text)[0].company == "Engines, Inc."

    def test_invalid_row_skipped_among_valid_rows(self):
        csv_text = "email,first_name\nab,Ann\nbob@x.co,Bob\n"
        assert [r.first_name for r in parse_recipients_csv(csv_text)] == ["Bob"]
