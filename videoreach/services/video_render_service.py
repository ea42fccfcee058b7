"""
VideoRenderService - Turns a recipient's assets into a rendered, hosted video.

Builds one synthesis prompt from the recipient's assets, renders it with
Veo, uploads the result to Supabase storage under a campaign/recipient
scoped path, and returns the public URL with the flat tier price.

Rendering never fails the recipient: on any synthesis or upload failure a
placeholder URL is returned with cost 0.
"""

import asyncio
import logging
from typing import List, Optional

from supabase import Client

from ..core.config import Config
from .models import AssetType, GeneratedAsset, Recipient, RenderResult, Tier, VeoConfig
from .veo_service import RenderFailed, RenderTimedOut, VeoService

logger = logging.getLogger(__name__)


PROMPT_STYLE_SUFFIX = (
    "Professional business video, friendly presenter speaking to camera, "
    "clean modern office setting, soft natural lighting."
)


class SupabaseBlobStore:
    """Uploads files to a Supabase storage bucket and hands back public URLs."""

    def __init__(self, supabase_client: Client, bucket: Optional[str] = None):
        self.client = supabase_client
        self.bucket = bucket or Config.VIDEO_BUCKET

    async def upload(self, path: str, data: bytes, content_type: str = "video/mp4") -> str:
        """
        Upload bytes and return the public URL.

        Args:
            path: Path within the bucket
            data: File bytes
            content_type: MIME type

        Returns:
            Public URL for the uploaded object
        """
        storage = self.client.storage.from_(self.bucket)
        await asyncio.to_thread(
            lambda: storage.upload(path, data, {"content-type": content_type, "upsert": "true"})
        )
        return await asyncio.to_thread(lambda: storage.get_public_url(path))


def _find_asset(assets: List[GeneratedAsset], name: str) -> Optional[GeneratedAsset]:
    for asset in assets:
        if asset.name == name:
            return asset
    return None


class VideoRenderService:
    """Bridge between generated assets and the video-synthesis service."""

    def __init__(
        self,
        veo: VeoService,
        blob_store: SupabaseBlobStore,
        veo_config: Optional[VeoConfig] = None
    ):
        self.veo = veo
        self.blob_store = blob_store
        self.veo_config = veo_config or VeoConfig()

    @staticmethod
    def storage_path(recipient: Recipient) -> str:
        return f"campaigns/{recipient.campaign_id}/recipients/{recipient.id}/video.mp4"

    @staticmethod
    def placeholder_url(recipient: Recipient) -> str:
        return f"{Config.PLACEHOLDER_VIDEO_BASE_URL}/{recipient.id}.mp4"

    @staticmethod
    def build_prompt(
        recipient: Recipient,
        assets: List[GeneratedAsset],
        base_script: str = ""
    ) -> str:
        """
        Assemble the synthesis prompt, truncated to MAX_VIDEO_PROMPT_CHARS.

        Greeting: the intro asset, else a templated greeting.
        Body: the role-adapted script, else the base script, else a generic
        role/industry sentence.
        """
        intro = next((a for a in assets if a.type == AssetType.INTRO), None)
        greeting = (intro.data.get("text") if intro else None) or (
            f"Hi {recipient.first_name}{f' from {recipient.company}' if recipient.company else ''}!"
        )

        role_script = _find_asset(assets, "role_script")
        body = (role_script.data.get("adapted_script") if role_script else None) or base_script
        if not body:
            body = (
                f"A short personal message for a {recipient.role or 'professional'} "
                f"in {recipient.industry or 'your industry'}."
            )

        prompt = f"{greeting} {body} {PROMPT_STYLE_SUFFIX}"
        return prompt[:Config.MAX_VIDEO_PROMPT_CHARS]

    async def render(
        self,
        recipient: Recipient,
        assets: List[GeneratedAsset],
        base_script: str,
        tier: Tier
    ) -> RenderResult:
        """
        Render and host a recipient's video.

        Returns:
            RenderResult with the public URL and tier price, or a placeholder
            URL with cost 0 when synthesis or upload fails
        """
        prompt = self.build_prompt(recipient, assets, base_script)

        try:
            video = await self.veo.synthesize(prompt, self.veo_config)
            url = await self.blob_store.upload(self.storage_path(recipient), video, "video/mp4")
        except RenderTimedOut as e:
            logger.warning(f"Render timed out for recipient {recipient.id}: {e}")
            return RenderResult(url=self.placeholder_url(recipient), cost=0.0, error=str(e), timed_out=True)
        except RenderFailed as e:
            logger.warning(f"Render failed for recipient {recipient.id}: {e}")
            return RenderResult(url=self.placeholder_url(recipient), cost=0.0, error=str(e))
        except Exception as e:
            logger.warning(f"Video upload failed for recipient {recipient.id}: {e}")
            return RenderResult(url=self.placeholder_url(recipient), cost=0.0, error=str(e))

        return RenderResult(
            url=url,
            cost=Config.TIER_VIDEO_COST[Tier(tier).value],
            rendered=True,
        )
