"""
Services layer for VideoReach campaign processing.

Provides separation between data access (CampaignStore), AI content
generation (GeminiService, PersonalizationEngine), video rendering
(VeoService, VideoRenderService) and orchestration (BatchProcessingService).
"""

from .models import (
    Tier,
    CampaignStatus,
    RecipientStatus,
    AssetType,
    Campaign,
    CampaignCreate,
    CampaignAnalytics,
    Recipient,
    RecipientCreate,
    PersonalizationContext,
    GeneratedAsset,
    RateLimitResult,
    RenderResult,
    ProcessingResult,
    CampaignProcessingSummary,
    CostEstimate,
    VeoConfig,
)
from .campaign_store import CampaignStore, StoreUnavailable, parse_recipients_csv
from .rate_limit_service import RateLimitService, RateLimitExceeded, RateLimitAction
from .gemini_service import GeminiService, ContentGenerationError
from .personalization_engine import PersonalizationEngine, build_context, personalize_text
from .veo_service import VeoService, RenderFailed, RenderTimedOut
from .video_render_service import VideoRenderService, SupabaseBlobStore
from .batch_processing_service import (
    BatchProcessingService,
    RecipientPipelineFailed,
    estimate_campaign_time,
    estimate_campaign_cost,
)

__all__ = [
    # Models
    'Tier',
    'CampaignStatus',
    'RecipientStatus',
    'AssetType',
    'Campaign',
    'CampaignCreate',
    'CampaignAnalytics',
    'Recipient',
    'RecipientCreate',
    'PersonalizationContext',
    'GeneratedAsset',
    'RateLimitResult',
    'RenderResult',
    'ProcessingResult',
    'CampaignProcessingSummary',
    'CostEstimate',
    'VeoConfig',
    # Services
    'CampaignStore',
    'StoreUnavailable',
    'parse_recipients_csv',
    'RateLimitService',
    'RateLimitExceeded',
    'RateLimitAction',
    'GeminiService',
    'ContentGenerationError',
    'PersonalizationEngine',
    'build_context',
    'personalize_text',
    'VeoService',
    'RenderFailed',
    'RenderTimedOut',
    'VideoRenderService',
    'SupabaseBlobStore',
    'BatchProcessingService',
    'RecipientPipelineFailed',
    'estimate_campaign_time',
    'estimate_campaign_cost',
]
