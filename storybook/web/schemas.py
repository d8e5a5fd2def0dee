"""
Request bodies accepted by the HTTP API. Field names follow the camelCase wire format.
"""

from __future__ import annotations

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    def wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class StoryRequestBody(CamelModel):
    """
    Storybook form. Required fields are checked by :class:`StoryRequest` so the
    error message names every missing field.
    """

    child_name: Optional[str] = None
    theme: Optional[str] = None
    illustration_style: Optional[str] = None
    style: Optional[str] = None
    language: Optional[str] = None
    age: Optional[Union[str, int]] = None
    age_range: Optional[str] = None
    custom_prompt: Optional[str] = None


class PageBody(CamelModel):
    page_number: Optional[int] = None
    content: str = ""
    image_description: str = ""
    image_url: str = ""


class ImageGenerateBody(CamelModel):
    title: Optional[str] = None
    cover_description: Optional[str] = None
    pages: list[PageBody] = Field(default_factory=list)
    illustration_style: Optional[str] = None
    main_character: Optional[str] = None
    child_name: Optional[str] = None
    theme: Optional[str] = None
    language: Optional[str] = None
    age_range: Optional[str] = None
    custom_prompt: Optional[str] = None
    character_profile: Optional[str] = None


class RegenerateImageBody(CamelModel):
    story_id: str
    page_index: Union[Literal["cover"], int]
    feedback: Any = None
    title: Optional[str] = None
    cover_description: Optional[str] = None
    page_data: Optional[dict[str, Any]] = None
    illustration_style: Optional[str] = None


class CharacterSheetBody(CamelModel):
    story_id: str
    title: str
    illustration_style: str
    character_name: Optional[str] = None
    character_description: Optional[str] = None
    pages: Optional[list[PageBody]] = None
