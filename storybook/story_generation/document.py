"""
Story document model shared by the text, image, storage and PDF stages.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

import yaml


def story_folder_name(title: str) -> str:
    """
    Deterministic folder name for a story title.

    Every non-alphanumeric character becomes ``_`` and the result is lowercased.
    """
    return re.sub(r"[^a-zA-Z0-9]", "_", title).lower()


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Page:
    """A single story page."""

    page_number: int
    content: str
    image_description: str = ""
    image_url: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "pageNumber": self.page_number,
            "content": self.content,
            "imageDescription": self.image_description,
            "imageUrl": self.image_url,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any], *, default_number: int) -> "Page":
        raw_number = payload.get("pageNumber", payload.get("page_number"))
        try:
            page_number = int(raw_number) if raw_number is not None else default_number
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid page number in entry: {payload}") from exc

        content = payload.get("content")
        if content is None:
            content = payload.get("text", "")

        return cls(
            page_number=page_number,
            content=str(content or "").strip(),
            image_description=str(
                payload.get("imageDescription") or payload.get("image_description") or ""
            ).strip(),
            image_url=str(payload.get("imageUrl") or payload.get("image_url") or "").strip(),
        )


@dataclass
class StoryDocument:
    """
    Generated storybook: title, cover description and ordered pages plus metadata.

    ``image_url`` on each page and ``cover_image`` stay empty until the image stage runs.
    """

    title: str
    cover_description: str
    pages: list[Page]
    characters: dict[str, str] = field(default_factory=dict)
    language: str = "english"
    theme: str | None = None
    illustration_style: str | None = None
    generated_at: str = field(default_factory=utc_timestamp)
    cover_image: str = ""
    character_profile: str | None = None
    main_character: str | None = None

    @property
    def folder_name(self) -> str:
        return story_folder_name(self.title)

    @property
    def page_images(self) -> list[str]:
        return [page.image_url for page in self.pages]

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "title": self.title,
            "coverDescription": self.cover_description,
            "pages": [page.to_dict() for page in self.pages],
            "characters": dict(self.characters),
            "language": self.language,
            "theme": self.theme,
            "illustrationStyle": self.illustration_style,
            "generatedAt": self.generated_at,
            "coverImage": self.cover_image,
        }
        if self.character_profile:
            payload["characterProfile"] = self.character_profile
        if self.main_character:
            payload["mainCharacter"] = self.main_character
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False, allow_unicode=True)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "StoryDocument":
        title = str(payload.get("title") or payload.get("storyTitle") or "").strip()
        if not title:
            raise ValueError("Story payload must include a non-empty 'title'.")

        pages_payload = payload.get("pages")
        if not isinstance(pages_payload, list):
            raise ValueError("Story payload must include a 'pages' list.")

        pages: list[Page] = []
        for index, entry in enumerate(pages_payload, start=1):
            if not isinstance(entry, Mapping):
                raise ValueError(f"Invalid page entry: {entry!r}")
            pages.append(Page.from_dict(entry, default_number=index))

        characters = payload.get("characters") or {}
        if not isinstance(characters, Mapping):
            characters = {}

        return cls(
            title=title,
            cover_description=str(payload.get("coverDescription") or "").strip(),
            pages=pages,
            characters={str(name): str(desc) for name, desc in characters.items()},
            language=str(payload.get("language") or "english").lower(),
            theme=payload.get("theme"),
            illustration_style=payload.get("illustrationStyle") or payload.get("style"),
            generated_at=str(
                payload.get("generatedAt") or payload.get("timestamp") or utc_timestamp()
            ),
            cover_image=str(payload.get("coverImage") or ""),
            character_profile=payload.get("characterProfile"),
            main_character=payload.get("mainCharacter"),
        )

    @classmethod
    def from_file(cls, source: str | Path) -> "StoryDocument":
        """Load a document from ``story.json`` or a YAML export."""
        path = Path(source)
        text = path.read_text(encoding="utf-8")
        if path.suffix.lower() in {".yaml", ".yml"}:
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
        if not isinstance(data, Mapping):
            raise ValueError("Story file must deserialize to a mapping.")
        return cls.from_dict(data)
