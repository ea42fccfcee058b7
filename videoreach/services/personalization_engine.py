"""
PersonalizationEngine - Tier-driven personalization asset generation.

Given one recipient and a tier, runs a fixed, tier-dependent sequence of
content-generation steps and returns the generated assets in order.

Tier semantics are data, not control flow: TIER_STEPS maps each tier to a
list of PersonalizationStep entries, and each tier's list is the previous
tier's list plus extra steps. A step whose condition is not met (missing
industry, role, ...) is omitted from the output; that is "no data", not an
error.

Every step degrades instead of failing. If the rate limiter denies the call,
or the generation call raises or times out, the step's deterministic
template fallback is used with cost 0 and the real elapsed time. The
outcome is tagged Degraded(asset, error) so callers and logs can tell a
fallback from a real success.
"""

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ..core.config import Config
from .gemini_service import CALL_COSTS, GeminiService
from .models import AssetType, GeneratedAsset, PersonalizationContext, Recipient, Tier
from .rate_limit_service import RateLimitAction, RateLimitService

logger = logging.getLogger(__name__)


# ============================================================================
# Step outcomes
# ============================================================================

@dataclass(frozen=True)
class Ok:
    """The generation call succeeded."""
    asset: GeneratedAsset


@dataclass(frozen=True)
class Degraded:
    """The generation call failed and the template fallback was used."""
    asset: GeneratedAsset
    error: Exception


StepOutcome = Union[Ok, Degraded]


# ============================================================================
# Step table
# ============================================================================

StepCondition = Callable[[PersonalizationContext, str], bool]
StepPrompt = Callable[[PersonalizationContext, str, str], str]
StepGenerator = Callable[[GeminiService, PersonalizationContext, str, str], Awaitable[Dict[str, Any]]]
StepFallback = Callable[[PersonalizationContext, str, str], Dict[str, Any]]


@dataclass(frozen=True)
class PersonalizationStep:
    """One content-generation step: when it runs, what it calls, what it falls back to."""
    name: str
    asset_type: AssetType
    condition: StepCondition
    prompt: StepPrompt
    generate: StepGenerator
    fallback: StepFallback

    @property
    def cost(self) -> float:
        return CALL_COSTS.get(self.name, 0.0)


def _always(context: PersonalizationContext, base_script: str) -> bool:
    return True


def _greeting(context: PersonalizationContext) -> str:
    return f"Hi {context.first_name}{f' from {context.company}' if context.company else ''}!"


def _fallback_subjects(context: PersonalizationContext, goal: str) -> List[str]:
    target = context.company or "you"
    return [
        f"{context.first_name}, check this out",
        f"{context.first_name}, a quick video for {target}",
        f"Made this for {target}",
        f"{context.first_name}: {goal}",
        f"Quick idea for {context.company or 'your team'}",
    ]


async def _gen_intro(g: GeminiService, ctx: PersonalizationContext, base_script: str, goal: str) -> Dict[str, Any]:
    return {"text": await g.generate_intro(ctx)}


async def _gen_subject_lines(g: GeminiService, ctx: PersonalizationContext, base_script: str, goal: str) -> Dict[str, Any]:
    subjects = await g.generate_subject_lines(ctx, goal)
    return {"subjects": subjects, "selected_subject": subjects[0]}


async def _gen_cta(g: GeminiService, ctx: PersonalizationContext, base_script: str, goal: str) -> Dict[str, Any]:
    return {"text": await g.generate_cta(ctx, goal), "goal": goal}


async def _gen_industry_visuals(g: GeminiService, ctx: PersonalizationContext, base_script: str, goal: str) -> Dict[str, Any]:
    return {"description": await g.generate_industry_visuals(ctx), "industry": ctx.industry}


async def _gen_role_script(g: GeminiService, ctx: PersonalizationContext, base_script: str, goal: str) -> Dict[str, Any]:
    return {
        "adapted_script": await g.adapt_script_for_role(ctx, base_script),
        "role": ctx.role,
        "base_script": base_script,
    }


async def _gen_pain_point_cta(g: GeminiService, ctx: PersonalizationContext, base_script: str, goal: str) -> Dict[str, Any]:
    return {"text": await g.generate_pain_point_cta(ctx), "pain_point": ctx.pain_point}


async def _gen_company_insights(g: GeminiService, ctx: PersonalizationContext, base_script: str, goal: str) -> Dict[str, Any]:
    return {"insights": await g.generate_company_insights(ctx), "company": ctx.company}


async def _gen_background_prompt(g: GeminiService, ctx: PersonalizationContext, base_script: str, goal: str) -> Dict[str, Any]:
    return {"video_prompt": await g.generate_background_prompt(ctx), "industry": ctx.industry}


BASIC_STEPS: List[PersonalizationStep] = [
    PersonalizationStep(
        name="intro",
        asset_type=AssetType.INTRO,
        condition=_always,
        prompt=lambda ctx, script, goal: GeminiService.intro_prompt(ctx),
        generate=_gen_intro,
        fallback=lambda ctx, script, goal: {"text": _greeting(ctx)},
    ),
    PersonalizationStep(
        name="subject_lines",
        asset_type=AssetType.CAPTION,
        condition=_always,
        prompt=lambda ctx, script, goal: GeminiService.subject_lines_prompt(ctx, goal),
        generate=_gen_subject_lines,
        fallback=lambda ctx, script, goal: {
            "subjects": _fallback_subjects(ctx, goal),
            "selected_subject": _fallback_subjects(ctx, goal)[0],
        },
    ),
    PersonalizationStep(
        name="cta",
        asset_type=AssetType.CTA,
        condition=_always,
        prompt=lambda ctx, script, goal: GeminiService.cta_prompt(ctx, goal),
        generate=_gen_cta,
        fallback=lambda ctx, script, goal: {"text": "Learn More", "goal": goal},
    ),
]

SMART_STEPS: List[PersonalizationStep] = BASIC_STEPS + [
    PersonalizationStep(
        name="industry_visuals",
        asset_type=AssetType.BROLL,
        condition=lambda ctx, script: bool(ctx.industry),
        prompt=lambda ctx, script, goal: GeminiService.industry_visuals_prompt(ctx),
        generate=_gen_industry_visuals,
        fallback=lambda ctx, script, goal: {
            "description": f"Professional {ctx.industry} imagery",
            "industry": ctx.industry,
        },
    ),
    PersonalizationStep(
        name="role_script",
        asset_type=AssetType.CAPTION,
        condition=lambda ctx, script: bool(ctx.role and script),
        prompt=lambda ctx, script, goal: GeminiService.role_script_prompt(ctx, script),
        generate=_gen_role_script,
        fallback=lambda ctx, script, goal: {
            "adapted_script": script,
            "role": ctx.role,
            "base_script": script,
        },
    ),
    PersonalizationStep(
        name="pain_point_cta",
        asset_type=AssetType.CTA,
        condition=lambda ctx, script: bool(ctx.pain_point),
        prompt=lambda ctx, script, goal: GeminiService.pain_point_cta_prompt(ctx),
        generate=_gen_pain_point_cta,
        fallback=lambda ctx, script, goal: {"text": "Get Started Today", "pain_point": ctx.pain_point},
    ),
]

ADVANCED_STEPS: List[PersonalizationStep] = SMART_STEPS + [
    PersonalizationStep(
        name="company_insights",
        asset_type=AssetType.CAPTION,
        condition=lambda ctx, script: bool(ctx.company and ctx.industry),
        prompt=lambda ctx, script, goal: GeminiService.company_insights_prompt(ctx),
        generate=_gen_company_insights,
        fallback=lambda ctx, script, goal: {
            "insights": (
                f"I've been following {ctx.company}'s work in {ctx.industry} "
                "and thought this would be relevant."
            ),
            "company": ctx.company,
        },
    ),
    PersonalizationStep(
        name="background_prompt",
        asset_type=AssetType.BACKGROUND,
        condition=lambda ctx, script: bool(ctx.industry),
        prompt=lambda ctx, script, goal: GeminiService.background_prompt_prompt(ctx),
        generate=_gen_background_prompt,
        fallback=lambda ctx, script, goal: {
            "video_prompt": f"Professional {ctx.industry} background",
            "industry": ctx.industry,
        },
    ),
]

TIER_STEPS: Dict[Tier, List[PersonalizationStep]] = {
    Tier.BASIC: BASIC_STEPS,
    Tier.SMART: SMART_STEPS,
    Tier.ADVANCED: ADVANCED_STEPS,
}


# ============================================================================
# Engine
# ============================================================================

def build_context(recipient: Recipient) -> PersonalizationContext:
    """Personalization context from a recipient row; blank strings count as missing."""
    return PersonalizationContext(
        first_name=recipient.first_name,
        last_name=recipient.last_name or None,
        company=recipient.company or None,
        industry=recipient.industry or None,
        role=recipient.role or None,
        pain_point=recipient.pain_point or None,
        custom_fields=recipient.custom_fields or {},
    )


def personalize_text(template: str, context: PersonalizationContext) -> str:
    """
    Fill {{placeholder}} tokens in a template.

    Supports {{firstName}}, {{lastName}}, {{fullName}}, {{company}}, {{role}},
    {{industry}}, {{painPoint}} and {{<custom field name>}}. Unknown
    placeholders are left as-is.
    """
    if not template:
        return template

    replacements = {
        "firstName": context.first_name or "",
        "lastName": context.last_name or "",
        "fullName": context.full_name,
        "company": context.company or "",
        "role": context.role or "",
        "industry": context.industry or "",
        "painPoint": context.pain_point or "",
    }
    for key, value in context.custom_fields.items():
        replacements.setdefault(key, "" if value is None else str(value))

    def _sub(match: "re.Match") -> str:
        key = match.group(1).strip()
        return replacements.get(key, match.group(0))

    return re.sub(r"\{\{\s*([^{}]+?)\s*\}\}", _sub, template)


class PersonalizationEngine:
    """
    Runs the tier step table for one recipient.

    generate() never raises for expected failure modes; every step either
    succeeds or degrades to its template.
    """

    def __init__(
        self,
        gemini: GeminiService,
        rate_limiter: Optional[RateLimitService] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize PersonalizationEngine.

        Args:
            gemini: Content-generation service
            rate_limiter: Optional limiter consulted before each call (ai-generation)
            clock: Monotonic clock in seconds, used for generation_time_ms
        """
        self.gemini = gemini
        self.rate_limiter = rate_limiter
        self._clock = clock

    @staticmethod
    def steps_for(tier: Tier) -> List[PersonalizationStep]:
        return TIER_STEPS[Tier(tier)]

    @staticmethod
    def planned_steps(
        recipient: Recipient,
        tier: Tier,
        base_script: str = ""
    ) -> List[PersonalizationStep]:
        """The steps that will run for this recipient, in order."""
        context = build_context(recipient)
        return [
            step for step in PersonalizationEngine.steps_for(tier)
            if step.condition(context, base_script or "")
        ]

    async def generate_with_outcomes(
        self,
        recipient: Recipient,
        tier: Tier,
        base_script: str = "",
        goal: Optional[str] = None,
        caller: str = "system"
    ) -> List[StepOutcome]:
        """
        Run every applicable step for a recipient, in order.

        Returns:
            One Ok or Degraded outcome per step that ran
        """
        context = build_context(recipient)
        base_script = base_script or ""
        goal = goal or Config.DEFAULT_GOAL

        outcomes: List[StepOutcome] = []
        for step in self.steps_for(tier):
            if not step.condition(context, base_script):
                continue
            outcomes.append(await self._run_step(step, context, base_script, goal, caller))

        degraded = [o.asset.name for o in outcomes if isinstance(o, Degraded)]
        if degraded:
            logger.warning(
                f"Recipient {recipient.id}: {len(degraded)}/{len(outcomes)} steps degraded ({', '.join(degraded)})"
            )
        return outcomes

    async def generate(
        self,
        recipient: Recipient,
        tier: Tier,
        base_script: str = "",
        goal: Optional[str] = None,
        caller: str = "system"
    ) -> List[GeneratedAsset]:
        """Ordered asset list for a recipient (fallback assets included)."""
        outcomes = await self.generate_with_outcomes(recipient, tier, base_script, goal, caller)
        return [outcome.asset for outcome in outcomes]

    async def _run_step(
        self,
        step: PersonalizationStep,
        context: PersonalizationContext,
        base_script: str,
        goal: str,
        caller: str
    ) -> StepOutcome:
        prompt = step.prompt(context, base_script, goal)
        start = self._clock()

        try:
            if self.rate_limiter is not None:
                await self.rate_limiter.enforce(RateLimitAction.AI_GENERATION, caller=caller)
            data = await step.generate(self.gemini, context, base_script, goal)
        except Exception as e:
            logger.warning(f"Generation degraded for step {step.name}: {type(e).__name__}: {e}")
            return Degraded(
                asset=GeneratedAsset(
                    type=step.asset_type,
                    name=step.name,
                    data=step.fallback(context, base_script, goal),
                    prompt=prompt,
                    generation_time_ms=self._elapsed_ms(start),
                    cost=0.0,
                    degraded=True,
                ),
                error=e,
            )

        return Ok(
            asset=GeneratedAsset(
                type=step.asset_type,
                name=step.name,
                data=data,
                prompt=prompt,
                generation_time_ms=self._elapsed_ms(start),
                cost=step.cost,
            )
        )

    def _elapsed_ms(self, start: float) -> int:
        return max(0, int((self._clock() - start) * 1000))
