"""
VeoService - Google Veo video synthesis for personalized recipient videos.

Synthesis is asynchronous on the provider side: submit() returns an
operation handle that is polled until done, sleeping a fixed interval
between polls. Unlike an open-ended poll, synthesize() enforces a maximum
total wait and raises RenderTimedOut once it is exceeded.

Documentation: https://ai.google.dev/gemini-api/docs/video
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

import logfire
from google import genai
from google.genai import types

from ..core.config import Config
from .models import VeoConfig

logger = logging.getLogger(__name__)


class RenderFailed(Exception):
    """Video synthesis failed or returned no video."""


class RenderTimedOut(RenderFailed):
    """Video synthesis did not finish within the maximum wait."""

    def __init__(self, waited_seconds: float, max_wait_seconds: float):
        self.waited_seconds = waited_seconds
        self.max_wait_seconds = max_wait_seconds
        super().__init__(
            f"Video synthesis not done after {waited_seconds:.0f}s (max {max_wait_seconds:.0f}s)"
        )


class VeoService:
    """
    Service for Veo text-to-video synthesis.

    Features:
    - submit / poll / download primitives over the google-genai client
    - Bounded polling (VEO_POLL_INTERVAL_SECONDS, VEO_MAX_WAIT_SECONDS)
    - Injectable sleep and clock for tests
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        poll_interval_seconds: Optional[float] = None,
        max_wait_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize Veo service.

        Args:
            api_key: Gemini API key (if None, uses Config.GEMINI_API_KEY)
            model: Veo model name (if None, uses Config.VEO_MODEL)
            poll_interval_seconds: Sleep between operation polls
            max_wait_seconds: Upper bound on total wait per video

        Raises:
            ValueError: If API key not found
        """
        self.api_key = api_key or Config.GEMINI_API_KEY
        if not self.api_key:
            raise ValueError("GEMINI_API_KEY not found in environment")

        self.model_name = model or Config.VEO_MODEL
        self.poll_interval_seconds = poll_interval_seconds or Config.VEO_POLL_INTERVAL_SECONDS
        self.max_wait_seconds = max_wait_seconds or Config.VEO_MAX_WAIT_SECONDS
        self.client = genai.Client(api_key=self.api_key)
        self._sleep = sleep
        self._clock = clock

        logger.info(f"VeoService initialized with model: {self.model_name}")

    async def submit(self, prompt: str, config: Optional[VeoConfig] = None) -> Any:
        """Start a synthesis job and return its operation handle."""
        config = config or VeoConfig()
        veo_config = types.GenerateVideosConfig(
            aspect_ratio=config.aspect_ratio.value,
            resolution=config.resolution.value,
            duration_seconds=config.duration_seconds,
            number_of_videos=1,
        )
        if config.negative_prompt:
            veo_config.negative_prompt = config.negative_prompt

        return await asyncio.to_thread(
            lambda: self.client.models.generate_videos(
                model=self.model_name,
                prompt=prompt,
                config=veo_config,
            )
        )

    async def poll(self, operation: Any) -> Any:
        """Refresh an operation handle."""
        return await asyncio.to_thread(lambda: self.client.operations.get(operation))

    async def download(self, operation: Any) -> bytes:
        """
        Download the rendered video of a finished operation.

        Raises:
            RenderFailed: If the operation holds no video
        """
        response = getattr(operation, "response", None)
        videos = getattr(response, "generated_videos", None) if response else None
        if not videos:
            raise RenderFailed("No video returned from Veo API")

        video = videos[0]
        return await asyncio.to_thread(lambda: self.client.files.download(file=video.video))

    async def synthesize(self, prompt: str, config: Optional[VeoConfig] = None) -> bytes:
        """
        Submit a prompt, wait for the render, and return the video bytes.

        Raises:
            RenderTimedOut: If the operation is not done within max_wait_seconds
            RenderFailed: If the provider reports an error or returns no video
        """
        start = self._clock()

        with logfire.span("veo_synthesize", model=self.model_name, prompt_chars=len(prompt)):
            try:
                operation = await self.submit(prompt, config)
            except Exception as e:
                raise RenderFailed(f"Veo submit failed: {e}") from e

            logger.info(f"Veo operation started: {getattr(operation, 'name', '?')}")

            while not operation.done:
                waited = self._clock() - start
                if waited + self.poll_interval_seconds > self.max_wait_seconds:
                    raise RenderTimedOut(waited, self.max_wait_seconds)

                await self._sleep(self.poll_interval_seconds)
                try:
                    operation = await self.poll(operation)
                except Exception as e:
                    raise RenderFailed(f"Veo poll failed: {e}") from e

            error = getattr(operation, "error", None)
            if error:
                raise RenderFailed(f"Veo operation failed: {error}")

            try:
                data = await self.download(operation)
            except RenderFailed:
                raise
            except Exception as e:
                raise RenderFailed(f"Veo download failed: {e}") from e

        logger.info(f"Veo render done in {self._clock() - start:.1f}s ({len(data)} bytes)")
        return data
