"""
HTTP routes for story generation, illustration, saving and listing.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import StreamingResponse

from storybook.common import PipelineConfig, StoryRequestError
from storybook.pipeline import StoryLibrary, StorybookPipeline, needs_story_text
from storybook.story_generation import Page, StoryDocument, StoryRequest
from storybook.story_generation.request import normalize_language

from .schemas import (
    CharacterSheetBody,
    ImageGenerateBody,
    PageBody,
    RegenerateImageBody,
    StoryRequestBody,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

SSE_STAGES = (
    "Brainstorming story ideas",
    "Crafting the perfect narrative",
    "Developing unique characters",
    "Creating the story structure",
    "Writing engaging dialogues",
    "Designing character appearances",
    "Planning illustration concepts",
    "Creating visual descriptions",
    "Generating art prompts",
    "Crafting detailed illustrations",
    "Finalizing page layouts",
    "Polishing the final storybook",
)


def get_pipeline(request: Request) -> StorybookPipeline:
    return request.app.state.pipeline


def get_library(request: Request) -> StoryLibrary:
    return request.app.state.library


def _pages(bodies: list[PageBody] | None) -> list[Page]:
    return [
        Page.from_dict(body.wire(), default_number=index)
        for index, body in enumerate(bodies or [], start=1)
    ]


@router.post("/generate-story")
async def generate_story(
    body: StoryRequestBody,
    pipeline: StorybookPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    request = StoryRequest.from_mapping(body.wire())
    return await pipeline.run(request)


@router.post("/story/generate")
async def generate_story_text(
    body: StoryRequestBody,
    pipeline: StorybookPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    request = StoryRequest.from_mapping(body.wire())
    document = await pipeline.generate_story(request)
    return document.to_dict()


@router.post("/image/generate")
async def generate_images(
    body: ImageGenerateBody,
    pipeline: StorybookPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    pages = _pages(body.pages)
    main_character = body.main_character or body.child_name

    if needs_story_text(body.cover_description, pages):
        logger.info("Story data incomplete, generating the story text first")
        request = StoryRequest.from_mapping(
            {
                "childName": main_character,
                "theme": body.theme,
                "illustrationStyle": body.illustration_style,
                "language": body.language,
                "ageRange": body.age_range,
                "customPrompt": body.custom_prompt,
            }
        )
        document = await pipeline.generate_story(request)
        if body.title and body.title.strip():
            document.title = body.title.strip()
    else:
        if not body.title or not body.title.strip():
            raise StoryRequestError("Missing required fields: title")
        document = StoryDocument(
            title=body.title.strip(),
            cover_description=body.cover_description or "",
            pages=pages,
            language=normalize_language(body.language),
            theme=body.theme,
            illustration_style=body.illustration_style,
            main_character=main_character,
        )

    if body.character_profile:
        document.character_profile = body.character_profile
    return await pipeline.generate_images(document)


@router.post("/image/regenerate")
async def regenerate_image(
    body: RegenerateImageBody,
    pipeline: StorybookPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    return await pipeline.regenerate_image(
        story_id=body.story_id,
        page_index=body.page_index,
        feedback=body.feedback,
        title=body.title,
        cover_description=body.cover_description,
        page_data=body.page_data,
        illustration_style=body.illustration_style,
    )


@router.post("/image/character")
async def create_character_sheet(
    body: CharacterSheetBody,
    pipeline: StorybookPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    return await pipeline.create_character_sheet(
        story_id=body.story_id,
        title=body.title,
        illustration_style=body.illustration_style,
        character_name=body.character_name,
        character_description=body.character_description,
        pages=_pages(body.pages) if body.pages else None,
    )


@router.post("/save-story")
async def save_story(
    payload: dict[str, Any] = Body(...),
    library: StoryLibrary = Depends(get_library),
) -> dict[str, Any]:
    try:
        document = StoryDocument.from_dict(payload)
    except ValueError as exc:
        raise StoryRequestError(f"Missing required story data: {exc}") from exc
    return await library.save_story(document)


@router.get("/list-stories")
async def list_stories(library: StoryLibrary = Depends(get_library)) -> dict[str, Any]:
    stories = await asyncio.to_thread(library.list_stories)
    return {"stories": stories}


async def _stage_events(request: Request, interval: float) -> AsyncIterator[str]:
    for stage in SSE_STAGES:
        await asyncio.sleep(interval)
        if await request.is_disconnected():
            logger.info("SSE client disconnected, stopping stage updates")
            return
        yield f"data: {json.dumps({'stage': stage})}\n\n"


@router.get("/sse")
async def stage_updates(
    request: Request,
    pipeline: StorybookPipeline = Depends(get_pipeline),
) -> StreamingResponse:
    config: PipelineConfig = pipeline.config
    return StreamingResponse(
        _stage_events(request, config.sse_interval_seconds),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
