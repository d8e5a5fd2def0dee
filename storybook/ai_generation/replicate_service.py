"""
Integration with Replicate for storybook illustration generation.
"""

from __future__ import annotations

import os
from collections.abc import Iterable as IterableABC
from typing import Any, Callable

import replicate

from .prompting import StorybookPrompt


def _build_flux_schnell_input(
    *,
    prompt: StorybookPrompt,
    reference_image: str | None,
) -> dict[str, Any]:
    return {
        "prompt": prompt.positive,
        "aspect_ratio": "1:1",
        "output_format": "png",
        "num_outputs": 1,
        "disable_safety_checker": False,
    }


def _build_flux_pro_input(
    *,
    prompt: StorybookPrompt,
    reference_image: str | None,
) -> dict[str, Any]:
    return {
        "prompt": prompt.positive,
        "aspect_ratio": "1:1",
        "output_format": "png",
        "safety_tolerance": 2,
        "prompt_upsampling": False,
    }


def _build_flux_kontext_input(
    *,
    prompt: StorybookPrompt,
    reference_image: str | None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "prompt": prompt.positive,
        "output_format": "png",
        "safety_tolerance": 2,
        "aspect_ratio": "1:1",
    }
    if reference_image:
        payload["input_image"] = reference_image
    return payload


def _build_sdxl_input(
    *,
    prompt: StorybookPrompt,
    reference_image: str | None,
) -> dict[str, Any]:
    return {
        "prompt": prompt.positive,
        "negative_prompt": prompt.negative,
        "width": 1024,
        "height": 1024,
        "num_outputs": 1,
        "guidance_scale": 7.5,
    }


_MODEL_INPUT_BUILDERS: dict[str, Callable[..., dict[str, Any]]] = {
    "black-forest-labs/flux-schnell": _build_flux_schnell_input,
    "black-forest-labs/flux-dev": _build_flux_schnell_input,
    "black-forest-labs/flux-1.1-pro": _build_flux_pro_input,
    "black-forest-labs/flux-kontext-pro": _build_flux_kontext_input,
    "stability-ai/sdxl": _build_sdxl_input,
}


def _build_replicate_input_payload(
    *,
    model_identifier: str,
    prompt: StorybookPrompt,
    reference_image: str | None,
) -> dict[str, Any]:
    normalized_identifier = model_identifier.strip().lower()
    builder = _MODEL_INPUT_BUILDERS.get(normalized_identifier)
    if builder is None and ":" in normalized_identifier:
        base_identifier = normalized_identifier.split(":", maxsplit=1)[0]
        builder = _MODEL_INPUT_BUILDERS.get(base_identifier)
    if builder is None:
        supported_models = ", ".join(sorted(set(_MODEL_INPUT_BUILDERS)))
        raise ValueError(
            "Model identifier "
            f"'{model_identifier}' is not configured with a default input payload. "
            f"Supported models: {supported_models}."
        )

    return builder(prompt=prompt, reference_image=reference_image)


class ReplicateImageGenerator:
    """
    Convenience wrapper around the Replicate client for storybook illustrations.

    Parameters
    ----------
    api_token:
        Replicate API token. Falls back to ``REPLICATE_API_TOKEN`` environment variable.
    model_identifier:
        Model string in the ``owner/model`` or ``owner/model:version`` format. Falls back
        to ``REPLICATE_MODEL`` and then to FLUX schnell.
    client:
        Optional pre-configured :class:`replicate.Client`. Mainly useful for testing.
    """

    def __init__(
        self,
        *,
        api_token: str | None = None,
        model_identifier: str | None = None,
        client: replicate.Client | None = None,
    ) -> None:
        self._api_token = api_token or os.getenv("REPLICATE_API_TOKEN")
        if not self._api_token and not client:
            raise ValueError(
                "Replicate API token is required. Set REPLICATE_API_TOKEN or pass api_token."
            )

        self._model_identifier = (
            model_identifier
            or os.getenv("REPLICATE_MODEL")
            or "black-forest-labs/flux-schnell"
        )
        self._client = client or replicate.Client(api_token=self._api_token)

    @property
    def model_identifier(self) -> str:
        """Return the model identifier currently used."""
        return self._model_identifier

    async def generate_image(
        self,
        prompt: StorybookPrompt | str,
        *,
        reference_image: str | None = None,
        **model_kwargs: Any,
    ) -> list[str]:
        """
        Render ``prompt`` and return the URLs produced by the model.

        Parameters
        ----------
        prompt:
            Final (sanitized and trimmed) prompt, or a :class:`StorybookPrompt` carrying a
            negative prompt for models that accept one.
        reference_image:
            Optional character sheet URL for models that accept an input image.
        **model_kwargs:
            Additional keyword arguments forwarded directly to the Replicate model invocation.
        """
        if isinstance(prompt, str):
            prompt = StorybookPrompt(positive=prompt)

        replicate_input = _build_replicate_input_payload(
            model_identifier=self._model_identifier,
            prompt=prompt,
            reference_image=reference_image,
        )
        # Allow the caller to tweak model-specific knobs (e.g., seed, guidance).
        replicate_input.update(model_kwargs)

        output = await self._client.async_run(
            self._model_identifier,
            input=replicate_input,
            use_file_output=False,
        )
        return normalize_image_outputs(output)


def normalize_image_outputs(raw: Any) -> list[str]:
    """
    Normalize the image outputs returned by Replicate into a list of URL strings.
    """

    if raw is None:
        return []

    if isinstance(raw, str):
        return [raw]

    if isinstance(raw, bytes):
        return [raw.decode("utf-8", errors="ignore")]

    url = getattr(raw, "url", None)
    if isinstance(url, str):
        return [url]

    if isinstance(raw, IterableABC):
        collected = list(raw)
        if not collected:
            return []

        if all(isinstance(item, str) and len(item) == 1 for item in collected):
            return ["".join(collected)]

        normalized: list[str] = []
        for item in collected:
            if isinstance(item, str):
                normalized.append(item)
            elif isinstance(item, bytes):
                normalized.append(item.decode("utf-8", errors="ignore"))
            elif isinstance(getattr(item, "url", None), str):
                normalized.append(item.url)
            elif isinstance(item, IterableABC):
                normalized.extend(normalize_image_outputs(item))
            elif item is not None:
                normalized.append(str(item))
        return normalized

    return [str(raw)]
