"""
service.py — Bundled Option Generator
=====================================
Turns a category into exactly N comma-separated items via an LLM.

FLOW:
-----
    category + playerCount + creativity
        → system instruction (count, flavour line)
        → chat completion (temperature by creativity)
        → split on commas, trim
        → validate_options (exact count, distinct, non-empty)
"""

import logging

from recast.core.errors import GenerationFailed
from recast.core.models import CreativityMode
from recast.services.llm_client import LLMClient, LLMServiceError
from recast.services.option_client import validate_options

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════
# PROMPTS
# ═══════════════════════════════════════════════════

SYSTEM_PROMPT = (
    "You are a game assistant. When given a category, return exactly {count} unique items "
    "within that category{flavour}. Provide only the items, separated by commas, "
    "with no additional text or formatting."
)

USER_PROMPT = "Category: {prompt}. Remember, provide exactly {count} items, comma-separated."

FLAVOUR = {
    CreativityMode.NORMAL: ", preferring options that are humorous or somewhat unexpected",
    CreativityMode.CREATIVE: ", leaning towards creative, surprising and funny picks",
    CreativityMode.CRAZY: ", going for absurd, wildly unexpected but still recognisable picks",
}

TEMPERATURE = {
    CreativityMode.NORMAL: 0.7,
    CreativityMode.CREATIVE: 1.0,
    CreativityMode.CRAZY: 1.3,
}


def build_prompts(prompt: str, player_count: int, creativity: CreativityMode) -> tuple[str, str]:
    system = SYSTEM_PROMPT.format(count=player_count, flavour=FLAVOUR[creativity])
    user = USER_PROMPT.format(prompt=prompt, count=player_count)
    return system, user


def split_options(text: str) -> list[str]:
    return [item.strip() for item in text.split(",") if item.strip()]


async def generate_options(
    llm: LLMClient,
    prompt: str,
    player_count: int,
    creativity: CreativityMode = CreativityMode.NORMAL,
) -> list[str]:
    system, user = build_prompts(prompt, player_count, creativity)
    try:
        result = await llm.generate(user, system_prompt=system, temperature=TEMPERATURE[creativity])
    except LLMServiceError as e:
        logger.warning(f"LLM call failed for {prompt!r}: {e}")
        raise GenerationFailed(f"Option generation failed: {e}") from e

    options = split_options(result.output)
    logger.info(f"Generated {len(options)}/{player_count} options for {prompt!r}")
    return validate_options(options, player_count)
