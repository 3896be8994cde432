"""
router.py — Option Generator Endpoint
=====================================
POST /api/options/generate — the default OPTION_GENERATOR_URL target.
"""

import logging

from fastapi import APIRouter, Depends, Request

from recast.apps.options import service
from recast.apps.options.schema import GenerateOptionsRequest, GenerateOptionsResponse
from recast.services.llm_client import LLMClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/options", tags=["options"])


def get_llm(request: Request) -> LLMClient:
    return request.app.state.llm


@router.post("/generate", response_model=GenerateOptionsResponse)
async def generate_options_endpoint(req: GenerateOptionsRequest, llm: LLMClient = Depends(get_llm)):
    """
    Returns:
        200: {"options": [...]} with exactly playerCount items
        502: generation_failed
    """
    options = await service.generate_options(llm, req.prompt, req.player_count, req.creativity)
    return {"options": options}
