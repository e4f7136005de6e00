# =============================================================================
# Profile API — Expertise Tags and Levels
# =============================================================================
#
#   GET  /profile                  the caller's expert profile
#   PUT  /profile/tags             replace tags (recomputes tag embedding)
#   POST /profile/extract-tags     vocabulary keyword match, no provider
#   POST /profile/generate-tags    tag-model suggestions, vocabulary only
#   GET  /level?xp=                level maths for the XP bar
# =============================================================================

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from expertqa.api.deps import get_current_user_id, get_services
from expertqa.db.store import ExpertProfile
from expertqa.models.requests import ExtractTagsBody, GenerateTagsBody, UpdateTagsBody
from expertqa.models.responses import LevelResponse, ProfileResponse, TagsResponse
from expertqa.services.factory import ServiceContainer
from expertqa.services.levels import (
    calculate_level,
    calculate_progress_to_next_level,
    xp_for_level,
)
from expertqa.services.llm import ModelRole
from expertqa.services.tags import extract_expertise_tags, generate_expertise_tags

router = APIRouter(tags=["Profile"])


def _profile_response(profile: ExpertProfile) -> ProfileResponse:
    return ProfileResponse(
        id=profile.id,
        email=profile.email,
        expertise=profile.expertise,
        expertise_tags=profile.expertise_tags,
        has_tags_embedding=profile.has_fresh_embedding,
        credits=profile.credits,
        xp=profile.xp,
        level=calculate_level(profile.xp),
    )


@router.get("/profile", response_model=ProfileResponse)
async def get_profile(
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> ProfileResponse:
    return _profile_response(await services.directory.get_profile(user_id))


@router.put("/profile/tags", response_model=ProfileResponse)
async def update_tags(
    body: UpdateTagsBody,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> ProfileResponse:
    profile = await services.directory.update_profile(user_id, body.tags, body.expertise)
    return _profile_response(profile)


@router.post("/profile/extract-tags", response_model=TagsResponse)
async def extract_tags(
    body: ExtractTagsBody,
    user_id: str = Depends(get_current_user_id),
) -> TagsResponse:
    return TagsResponse(tags=extract_expertise_tags(body.text))


@router.post("/profile/generate-tags", response_model=TagsResponse)
async def generate_tags(
    body: GenerateTagsBody,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> TagsResponse:
    tags = await generate_expertise_tags(
        services.registry.get(ModelRole.TAG), body.expertise_text,
    )
    return TagsResponse(tags=tags)


@router.get("/level", response_model=LevelResponse)
async def level(xp: int = Query(..., ge=0)) -> LevelResponse:
    current = calculate_level(xp)
    next_level_xp = xp_for_level(current + 1)
    return LevelResponse(
        xp=xp,
        level=current,
        next_level_xp=next_level_xp,
        progress=calculate_progress_to_next_level(xp),
        xp_needed=max(next_level_xp - xp, 0),
    )
