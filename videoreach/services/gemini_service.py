"""
GeminiService - Personalized outreach copy generation using Google Gemini.

One call per asset type. Every call is bounded by a timeout so one slow
request cannot stall a whole batch, and transient API errors are retried
with exponential backoff. Timeouts and empty responses are not retried.

Callers (the personalization engine) own the fallback behaviour: this
service raises on failure and never substitutes template text itself.
"""

import asyncio
import logging
import re
from typing import List, Optional

from google import genai
from tenacity import (
    AsyncRetrying,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..core.config import Config
from .models import PersonalizationContext

logger = logging.getLogger(__name__)


SUBJECT_LINE_COUNT = 5

_LIST_MARKER = re.compile(r"^\s*(?:[-*\u2022]|\d+[.)])\s*")

# Flat cost per successful call (USD)
CALL_COSTS = {
    "intro": 0.001,
    "subject_lines": 0.002,
    "cta": 0.001,
    "industry_visuals": 0.003,
    "role_script": 0.004,
    "pain_point_cta": 0.002,
    "company_insights": 0.005,
    "background_prompt": 0.003,
}


class ContentGenerationError(Exception):
    """Raised when a generation call fails or returns nothing usable."""


def _optional_line(label: str, value: Optional[str]) -> str:
    return f"{label}: {value}\n" if value else ""


class GeminiService:
    """
    Service for outreach copy generation.

    Features:
    - Per-call timeout (CONTENT_CALL_TIMEOUT_SECONDS)
    - Retries with exponential backoff on transient errors
    - Plain-text and line-list response parsing
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None
    ):
        """
        Initialize Gemini service.

        Args:
            api_key: Gemini API key (if None, uses Config.GEMINI_API_KEY)
            model: Model name (if None, uses Config.CONTENT_MODEL)
            timeout_seconds: Per-call timeout
            max_attempts: Attempts per call, including the first

        Raises:
            ValueError: If API key not found
        """
        self.api_key = api_key or Config.GEMINI_API_KEY
        if not self.api_key:
            raise ValueError("GEMINI_API_KEY not found in environment")

        self.model_name = model or Config.CONTENT_MODEL
        self.timeout_seconds = timeout_seconds or Config.CONTENT_CALL_TIMEOUT_SECONDS
        self.max_attempts = max_attempts or Config.CONTENT_MAX_ATTEMPTS
        self.client = genai.Client(api_key=self.api_key)

        logger.info(f"GeminiService initialized with model: {self.model_name}")

    async def _call_model(self, prompt: str) -> str:
        """Single bounded model call."""
        response = await asyncio.wait_for(
            asyncio.to_thread(
                lambda: self.client.models.generate_content(
                    model=self.model_name,
                    contents=prompt,
                )
            ),
            timeout=self.timeout_seconds,
        )
        text = (response.text or "").strip() if response else ""
        if not text:
            raise ContentGenerationError("Empty response from Gemini")
        return text

    async def generate_text(self, prompt: str) -> str:
        """
        Generate text for a prompt with timeout and retries.

        Raises:
            asyncio.TimeoutError: If a call exceeds the timeout
            ContentGenerationError: If the model returns nothing
            Exception: The last API error once retries are exhausted
        """
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=8),
            retry=retry_if_not_exception_type((asyncio.TimeoutError, ContentGenerationError)),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        f"Retrying Gemini call (attempt {attempt.retry_state.attempt_number}/{self.max_attempts})"
                    )
                return await self._call_model(prompt)

    async def generate_lines(self, prompt: str, limit: int) -> List[str]:
        """Generate text and split it into up to `limit` non-empty lines."""
        text = await self.generate_text(prompt)
        lines = [_LIST_MARKER.sub("", line).strip().strip('"') for line in text.splitlines()]
        lines = [line for line in lines if line]
        if not lines:
            raise ContentGenerationError("No usable lines in Gemini response")
        return lines[:limit]

    # =========================================================================
    # Prompts
    # =========================================================================

    @staticmethod
    def intro_prompt(context: PersonalizationContext) -> str:
        return (
            "Create a professional, personalized video intro line for:\n"
            f"Name: {context.full_name}\n"
            f"{_optional_line('Company', context.company)}"
            "\nWrite one warm, engaging line (max 15 words) that addresses them by name "
            "and mentions their company if provided.\n"
            "Output ONLY the intro text, no quotes or extra formatting."
        )

    @staticmethod
    def subject_lines_prompt(context: PersonalizationContext, topic: str) -> str:
        return (
            f"Create {SUBJECT_LINE_COUNT} compelling email subject lines for:\n"
            f"Recipient: {context.full_name}\n"
            f"{_optional_line('Company', context.company)}"
            f"{_optional_line('Role', context.role)}"
            f"Topic: {topic}\n"
            "\nMake them personalized, benefit-focused, and under 60 characters each.\n"
            f"Format: just the {SUBJECT_LINE_COUNT} subject lines, one per line, no numbering."
        )

    @staticmethod
    def cta_prompt(context: PersonalizationContext, goal: str) -> str:
        return (
            "Create a compelling call-to-action button text for:\n"
            f"Recipient: {context.first_name}\n"
            f"{_optional_line('Company', context.company)}"
            f"{_optional_line('Role', context.role)}"
            f"{_optional_line('Pain Point', context.pain_point)}"
            f"Goal: {goal}\n"
            "\nGenerate ONE short, action-oriented CTA (max 5 words).\n"
            "Output ONLY the CTA text, no quotes or explanations."
        )

    @staticmethod
    def industry_visuals_prompt(context: PersonalizationContext) -> str:
        return (
            f"Describe industry-specific B-roll visuals for the {context.industry or 'business'} industry.\n"
            f"{_optional_line('Company', context.company)}"
            "\nWrite 2-3 sentences of professional imagery that would resonate with this industry.\n"
            "Examples: SaaS = modern dashboards, FinTech = security shields, Healthcare = caring professionals.\n"
            "Output ONLY the visual description."
        )

    @staticmethod
    def role_script_prompt(context: PersonalizationContext, base_script: str) -> str:
        return (
            f"Adapt this video script for a {context.role or 'professional'}:\n\n"
            f"Base Script: {base_script}\n\n"
            f"Recipient Role: {context.role or 'professional'}\n"
            f"Company: {context.company or 'their company'}\n\n"
            "Emphasize the benefits most relevant to their role "
            "(executives = ROI, technical = features, sales = revenue).\n"
            "Keep it under 100 words. Output ONLY the adapted script."
        )

    @staticmethod
    def pain_point_cta_prompt(context: PersonalizationContext) -> str:
        return (
            "Create a compelling CTA that addresses this specific pain point:\n"
            f"Pain Point: {context.pain_point or 'business challenges'}\n"
            f"Company: {context.company or 'their company'}\n"
            f"Role: {context.role or 'professional'}\n\n"
            "Generate ONE specific CTA (max 7 words). Output ONLY the CTA text."
        )

    @staticmethod
    def company_insights_prompt(context: PersonalizationContext) -> str:
        return (
            "Generate personalized company research insights for:\n"
            f"Company: {context.company or 'the company'}\n"
            f"Industry: {context.industry or 'business'}\n\n"
            "Write 2-3 sentences that show you've researched them: a relevant industry trend "
            "or challenge they likely face, and how it relates to their situation.\n"
            "Output ONLY the insight text."
        )

    @staticmethod
    def background_prompt_prompt(context: PersonalizationContext) -> str:
        return (
            "Create a video generation prompt for a dynamic background that matches:\n"
            f"Industry: {context.industry or 'business'}\n"
            f"Company Type: {context.company or 'professional company'}\n\n"
            "A 5-second professional background loop (abstract, ambient, no people).\n"
            "Examples: Tech = flowing data streams, Finance = elegant stock tickers.\n"
            "Output ONLY the prompt (under 100 words)."
        )

    # =========================================================================
    # Asset calls
    # =========================================================================

    async def generate_intro(self, context: PersonalizationContext) -> str:
        return await self.generate_text(self.intro_prompt(context))

    async def generate_subject_lines(self, context: PersonalizationContext, topic: str) -> List[str]:
        subjects = await self.generate_lines(self.subject_lines_prompt(context, topic), SUBJECT_LINE_COUNT)
        if len(subjects) < SUBJECT_LINE_COUNT:
            raise ContentGenerationError(
                f"Expected {SUBJECT_LINE_COUNT} subject lines, got {len(subjects)}"
            )
        return subjects

    async def generate_cta(self, context: PersonalizationContext, goal: str) -> str:
        return await self.generate_text(self.cta_prompt(context, goal))

    async def generate_industry_visuals(self, context: PersonalizationContext) -> str:
        return await self.generate_text(self.industry_visuals_prompt(context))

    async def adapt_script_for_role(self, context: PersonalizationContext, base_script: str) -> str:
        return await self.generate_text(self.role_script_prompt(context, base_script))

    async def generate_pain_point_cta(self, context: PersonalizationContext) -> str:
        return await self.generate_text(self.pain_point_cta_prompt(context))

    async def generate_company_insights(self, context: PersonalizationContext) -> str:
        return await self.generate_text(self.company_insights_prompt(context))

    async def generate_background_prompt(self, context: PersonalizationContext) -> str:
        return await self.generate_text(self.background_prompt_prompt(context))
