"""
Prompt construction utilities for the story text stage.
"""

from __future__ import annotations

import json
from dataclasses import dataclass

from .document import StoryDocument
from .request import StoryRequest

_COMPLEXITY_BY_GROUP: dict[str, tuple[str, str]] = {
    "toddler": ("very simple words and short sentences", "basic"),
    "early": ("straightforward language with some new vocabulary", "basic"),
    "middle": ("more complex sentences with some compound structures", "moderately advanced"),
    "older": (
        "varied sentence structures including compound and complex sentences",
        "rich and diverse",
    ),
}


@dataclass(frozen=True)
class StoryPrompt:
    """
    Container for the system and user prompts passed to the text model.
    """

    system: str
    user: str


def _format_page_skeleton(page_count: int) -> str:
    pages = [
        {
            "pageNumber": number,
            "content": f"Text for page {number}",
            "imageDescription": f"Detailed description to generate an illustration for page {number}",
        }
        for number in range(1, page_count + 1)
    ]
    skeleton = {
        "title": "Story Title",
        "coverDescription": "Detailed description to generate a cover illustration",
        "pages": pages,
    }
    return json.dumps(skeleton, indent=2)


def build_story_prompt(request: StoryRequest, *, page_count: int) -> StoryPrompt:
    """
    Build the prompt pair used to solicit a complete JSON story from the LLM.
    """
    complexity, vocabulary = _COMPLEXITY_BY_GROUP[request.age_group]
    additional = (
        f"\nAdditional considerations: {request.custom_prompt}" if request.custom_prompt else ""
    )

    system_prompt = f"""You are a professional children's book author. Create a short story in {request.language_label} {request.age_prompt} featuring a main character named {request.child_name}.
The story should have a plot related to: {request.theme_description}{additional}

The story should have:
1. An engaging title
2. An introduction that presents the main character and setting
3. A development with a problem or challenge
4. A resolution that teaches a lesson related to the theme
5. A happy ending

The story must be divided into exactly {page_count} pages (including the introduction and ending).

The image descriptions should be detailed and visual, including:
- Characters present (appearance, expressions, poses)
- Setting (location, time, environmental elements)
- Main actions occurring
- Important elements for the plot
- General atmosphere and emotional tone

IMPORTANT: Ensure the text for each page is brief (maximum 3-4 sentences) so it fits well in an illustration.

IMPORTANT: Use {complexity} and {vocabulary} vocabulary appropriate for the age group:
- For 1-4 years: Use very simple words and short sentences.
- For 4-7 years: Use straightforward language with some new vocabulary.
- For 7-10 years: Use more complex sentences and richer vocabulary.

IMPORTANT: Keep all content child-friendly and appropriate. Avoid anything frightening, violent or unsafe.

Respond in JSON format only."""

    user_prompt = f"""Write the story now.

Format the response as a JSON object with exactly this structure, with {page_count} entries in "pages":
{_format_page_skeleton(page_count)}"""

    return StoryPrompt(system=system_prompt, user=user_prompt)


def build_character_description_prompt(document: StoryDocument, child_name: str) -> StoryPrompt:
    """
    Ask for a name -> visual description mapping covering the story's main characters.
    """
    story_text = " ".join(page.content for page in document.pages)

    if document.language == "spanish":
        user_prompt = (
            f'Basado en este cuento infantil titulado "{document.title}", crea descripciones '
            f"visuales detalladas de los personajes principales, especialmente {child_name}, que "
            "se puedan utilizar para mantener la consistencia visual en todas las ilustraciones. "
            "Incluye detalles sobre apariencia, vestimenta y cualquier característica distintiva. "
            "Formatea tu respuesta como un objeto JSON con los nombres de los personajes como "
            "claves y sus descripciones como valores.\n\n"
            f"Resumen de la historia:\n{story_text}"
        )
    else:
        user_prompt = (
            f'Based on this children\'s story titled "{document.title}", create detailed visual '
            f"descriptions of the main characters, especially {child_name}, that can be used to "
            "maintain visual consistency across all illustrations. Include details about "
            "appearance, clothing, and any distinguishing features. Format your response as a "
            "JSON object with character names as keys and their descriptions as values.\n\n"
            f"Story summary:\n{story_text}"
        )

    system_prompt = (
        "You are an expert at creating detailed and consistent character descriptions for "
        "illustrations. Provide your response in JSON format."
    )
    return StoryPrompt(system=system_prompt, user=user_prompt)
