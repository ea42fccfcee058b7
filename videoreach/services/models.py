"""
Pydantic models for VideoReach campaign processing.

These models provide type-safe, validated data structures for:
- Campaign, recipient and analytics rows (Campaign, Recipient, CampaignAnalytics)
- Generated personalization assets (GeneratedAsset)
- Rate limiter decisions (RateLimitResult)
- Per-recipient and per-run processing results (ProcessingResult, CampaignProcessingSummary)

All models use Pydantic v2. Row models ignore unknown columns so that the
Supabase schema can grow without breaking reads.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime
from typing import List, Optional, Dict, Any
from enum import Enum


# ============================================================================
# Enums
# ============================================================================

class Tier(str, Enum):
    """Personalization tier. Determines which steps run and the per-video fee."""
    BASIC = "basic"
    SMART = "smart"
    ADVANCED = "advanced"


class CampaignStatus(str, Enum):
    """Campaign processing lifecycle."""
    DRAFT = "draft"
    PROCESSING = "processing"
    READY = "ready"
    CANCELLED = "cancelled"


class RecipientStatus(str, Enum):
    """Recipient processing lifecycle."""
    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"
    CANCELLED = "cancelled"


class AssetType(str, Enum):
    """Type tag for a generated personalization asset."""
    INTRO = "intro"
    CAPTION = "caption"
    CTA = "cta"
    BROLL = "broll"
    BACKGROUND = "background"


# Legal recipient transitions. pending -> failed covers recipients rejected
# before they could be claimed (rate limit denial). processing -> pending is
# only written by the stale-claim sweep.
RECIPIENT_TRANSITIONS: Dict[RecipientStatus, frozenset] = {
    RecipientStatus.PENDING: frozenset({
        RecipientStatus.PROCESSING,
        RecipientStatus.FAILED,
        RecipientStatus.CANCELLED,
    }),
    RecipientStatus.PROCESSING: frozenset({
        RecipientStatus.READY,
        RecipientStatus.FAILED,
        RecipientStatus.PENDING,
    }),
    RecipientStatus.FAILED: frozenset({RecipientStatus.PROCESSING}),
    RecipientStatus.READY: frozenset(),
    RecipientStatus.CANCELLED: frozenset(),
}


def can_transition(current: RecipientStatus, target: RecipientStatus) -> bool:
    """Return True if a recipient may move from current to target."""
    return target in RECIPIENT_TRANSITIONS[RecipientStatus(current)]


# ============================================================================
# Campaign Models
# ============================================================================

class CampaignCreate(BaseModel):
    """Input for creating a campaign."""
    name: str = Field(..., min_length=1, description="Campaign name")
    personalization_tier: Tier = Field(default=Tier.BASIC, description="Personalization tier")
    template_script: Optional[str] = Field(None, description="Base video script, may contain {{placeholders}}")
    message_template: str = Field(default="", description="Goal / message template string")
    master_video_id: Optional[str] = Field(None, description="Master video reference")
    subject: Optional[str] = Field(None, description="Default email subject")


class Campaign(BaseModel):
    """
    Campaign row.

    total_recipients is set once at ingestion and never recomputed from
    processing results.
    """
    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., description="Campaign ID (store-assigned)")
    user_id: Optional[str] = Field(None, description="Owning user")
    name: str = Field(..., description="Campaign name")
    personalization_tier: Tier = Field(default=Tier.BASIC)
    template_script: Optional[str] = Field(None)
    message_template: str = Field(default="")
    master_video_id: Optional[str] = Field(None)
    processing_status: CampaignStatus = Field(default=CampaignStatus.DRAFT)
    total_recipients: int = Field(default=0, ge=0)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("message_template", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return v or ""

    @property
    def is_cancelled(self) -> bool:
        return self.processing_status == CampaignStatus.CANCELLED


class CampaignAnalytics(BaseModel):
    """One analytics row per campaign, written only by the orchestrator."""
    model_config = ConfigDict(extra="ignore")

    campaign_id: str
    total_recipients: int = Field(default=0, ge=0)
    videos_generated: int = Field(default=0, ge=0, description="Ready recipients plus failed-with-partial-cost")
    videos_sent: int = Field(default=0, ge=0)
    total_views: int = Field(default=0, ge=0)
    unique_views: int = Field(default=0, ge=0)
    total_cost: float = Field(default=0.0, ge=0, description="Sum of recipient generation_cost")


# ============================================================================
# Recipient Models
# ============================================================================

class RecipientCreate(BaseModel):
    """Input row for bulk recipient ingestion."""
    email: str = Field(..., min_length=3)
    first_name: str = Field(..., min_length=1)
    last_name: Optional[str] = None
    company: Optional[str] = None
    role: Optional[str] = None
    industry: Optional[str] = None
    pain_point: Optional[str] = None
    custom_fields: Dict[str, Any] = Field(default_factory=dict)


class Recipient(BaseModel):
    """
    Campaign recipient row.

    The derived fields (personalized_video_url, generation_cost,
    processing_time_ms, error_message) are written by the orchestrator on the
    terminal transition.
    """
    model_config = ConfigDict(extra="ignore")

    id: str
    campaign_id: str
    email: str
    first_name: str
    last_name: Optional[str] = None
    company: Optional[str] = None
    role: Optional[str] = None
    industry: Optional[str] = None
    pain_point: Optional[str] = None
    custom_fields: Dict[str, Any] = Field(default_factory=dict)

    status: RecipientStatus = Field(default=RecipientStatus.PENDING)
    personalized_video_url: Optional[str] = None
    generation_cost: float = Field(default=0.0, ge=0)
    processing_time_ms: Optional[int] = None
    error_message: Optional[str] = None
    claimed_at: Optional[datetime] = Field(None, description="Lease timestamp written by the claim")
    created_at: Optional[datetime] = None

    @field_validator("custom_fields", mode="before")
    @classmethod
    def _none_to_dict(cls, v):
        return v or {}

    @field_validator("generation_cost", mode="before")
    @classmethod
    def _none_to_zero(cls, v):
        return v or 0.0


# ============================================================================
# Personalization Models
# ============================================================================

class PersonalizationContext(BaseModel):
    """Recipient fields handed to every content-generation call."""
    first_name: str
    last_name: Optional[str] = None
    company: Optional[str] = None
    industry: Optional[str] = None
    role: Optional[str] = None
    pain_point: Optional[str] = None
    custom_fields: Dict[str, Any] = Field(default_factory=dict)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name or ''}".strip()


class GeneratedAsset(BaseModel):
    """
    One generated content artifact for a recipient.

    Assets are write-once: re-running a recipient appends new rows.
    """
    type: AssetType = Field(..., description="Asset type tag")
    name: str = Field(..., description="Step that produced it (e.g. 'subject_lines', 'role_script')")
    data: Dict[str, Any] = Field(default_factory=dict, description="Structured payload")
    prompt: str = Field(default="", description="Prompt sent to the generator")
    url: Optional[str] = None
    generation_time_ms: int = Field(default=0, ge=0)
    cost: float = Field(default=0.0, ge=0)
    degraded: bool = Field(default=False, description="True if fallback text was substituted")


# ============================================================================
# Rate Limiting Models
# ============================================================================

class RateLimitResult(BaseModel):
    """Decision returned by the rate limiter."""
    allowed: bool
    remaining: int = Field(..., ge=0)
    reset_at: datetime
    limit: int = Field(..., ge=0)
    window_seconds: int = Field(..., gt=0)


# ============================================================================
# Processing Result Models
# ============================================================================

class RenderResult(BaseModel):
    """Outcome of the video render bridge for one recipient."""
    url: str
    cost: float = Field(default=0.0, ge=0)
    rendered: bool = Field(default=False, description="False when a placeholder URL was substituted")
    timed_out: bool = Field(default=False, description="True when synthesis exceeded the maximum wait")
    error: Optional[str] = None


class ProcessingResult(BaseModel):
    """Outcome of one recipient pipeline."""
    recipient_id: str
    status: str = Field(..., description="'success', 'failed' or 'skipped'")
    video_url: Optional[str] = None
    cost: float = Field(default=0.0, ge=0)
    processing_time_ms: int = Field(default=0, ge=0)
    error: Optional[str] = None
    degraded_steps: List[str] = Field(default_factory=list)


class CampaignProcessingSummary(BaseModel):
    """Aggregate outcome of a campaign run or a retry run."""
    campaign_id: str
    total: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    total_cost: float = 0.0
    total_time_ms: int = 0
    batches: int = 0
    cancelled: bool = False
    results: List[ProcessingResult] = Field(default_factory=list)


class CostEstimate(BaseModel):
    """Pre-launch cost estimate shown to operators."""
    recipient_count: int
    tier: Tier
    per_video: float
    total: float


# ============================================================================
# Video Synthesis Models
# ============================================================================

class AspectRatio(str, Enum):
    """Valid aspect ratios for Veo video generation."""
    LANDSCAPE = "16:9"
    PORTRAIT = "9:16"


class Resolution(str, Enum):
    """Valid resolutions for Veo video generation."""
    HD = "720p"
    FULL_HD = "1080p"


class VeoConfig(BaseModel):
    """Settings passed to the video-synthesis service with each prompt."""
    aspect_ratio: AspectRatio = Field(default=AspectRatio.LANDSCAPE)
    resolution: Resolution = Field(default=Resolution.HD)
    duration_seconds: int = Field(default=8, description="Clip length: 4, 6 or 8 seconds")
    negative_prompt: Optional[str] = Field(
        default="blurry, low quality, distorted, deformed",
        description="Content to avoid in generation"
    )

    @field_validator("duration_seconds")
    @classmethod
    def _valid_duration(cls, v):
        if v not in (4, 6, 8):
            raise ValueError("duration_seconds must be 4, 6 or 8")
        return v
