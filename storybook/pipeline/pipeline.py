"""
Orchestrates the storybook pipeline from request to illustrated, persisted story.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Sequence

from storybook.ai_generation import (
    Illustrator,
    ReplicateImageGenerator,
    build_character_sheet_prompt,
    build_cover_prompt,
    build_page_prompt,
    build_retry_page_prompt,
    enhance_prompt_with_feedback,
    is_placeholder,
    placeholder_cover_url,
    placeholder_page_url,
)
from storybook.ai_generation.illustrator import ImageGeneratorLike
from storybook.common import (
    CompletionCallable,
    ImageGenerationError,
    PipelineConfig,
    RateLimiter,
    StorageError,
    StoryRequestError,
    request_logger,
)
from storybook.storage import (
    CHARACTER_SHEET_FILENAME,
    COVER_FILENAME,
    STORY_FILENAME,
    ImageDownloader,
    LocalStoryStorage,
    StoryStorage,
    page_filename,
    regeneration_filename,
    to_data_url,
)
from storybook.story_generation import (
    CharacterProfileGenerator,
    Page,
    StoryDocument,
    StoryRequest,
    StoryTextGenerator,
    extract_character_from_pages,
    story_folder_name,
)
from storybook.story_generation.character import DEFAULT_PROTAGONIST_NAME

from .progress import GenerationProgress, ProgressStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, dict[str, Any]], None]
SleepCallable = Callable[[float], Awaitable[None]]
RunLogger = logging.Logger | logging.LoggerAdapter


@dataclass
class IllustrationResult:
    """Outcome of the image stage for one document."""

    document: StoryDocument
    summary: dict[str, Any]
    warnings: list[str]
    images_generated: int
    used_fallback_images: bool
    skipped_pages: list[int]

    @property
    def all_pages_generated(self) -> bool:
        return self.summary["successful"] == self.summary["total"]

    @property
    def failed_pages(self) -> list[int]:
        return list(self.summary["failedPages"])


@dataclass
class _IllustrationRun:
    document: StoryDocument
    folder: str
    progress: GenerationProgress
    illustrator: Illustrator
    log: RunLogger
    callback: ProgressCallback | None
    reference_image: str | None = None
    warnings: list[str] = field(default_factory=list)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


def needs_story_text(cover_description: str | None, pages: Sequence[Page] | None) -> bool:
    """True when the text stage must run before images can be generated."""
    if not cover_description or not pages:
        return True
    return any(not page.image_description for page in pages)


class StorybookPipeline:
    """
    High-level coordinator that chains story text, character profile and image generation.

    Every knob comes from the :class:`PipelineConfig` handed in; collaborators are
    injectable so tests can swap vendor clients, storage, clock and sleep.
    """

    def __init__(
        self,
        *,
        config: PipelineConfig | None = None,
        storage: StoryStorage | None = None,
        story_generator: StoryTextGenerator | None = None,
        profile_generator: CharacterProfileGenerator | None = None,
        image_generator: ImageGeneratorLike | None = None,
        downloader: ImageDownloader | None = None,
        rate_limiter: RateLimiter | None = None,
        completion_fn: CompletionCallable | None = None,
        text_api_key: str | None = None,
        image_api_token: str | None = None,
        sleep: SleepCallable = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or PipelineConfig()
        self.storage = storage or LocalStoryStorage("public/stories")
        self._story_generator = story_generator or StoryTextGenerator(
            api_key=text_api_key,
            model=self.config.text_model,
            completion_fn=completion_fn,
            page_count=self.config.page_count,
        )
        self._profile_generator = profile_generator or CharacterProfileGenerator(
            api_key=text_api_key,
            model=self.config.profile_model,
            completion_fn=completion_fn,
        )
        self._image_generator = (
            image_generator
            if image_generator is not None
            else self._default_image_generator(image_api_token)
        )
        self._downloader = downloader or ImageDownloader(
            storage=self.storage,
            attempts=self.config.download_attempts,
            retry_delay=self.config.download_retry_delay,
            sleep=sleep,
        )
        self._rate_limiter = rate_limiter or RateLimiter(
            capacity=self.config.batch_size,
            period=self.config.batch_window_seconds,
            clock=clock,
            sleep=sleep,
        )
        self._sleep = sleep
        self._progress_store = ProgressStore(self.storage)

    @property
    def downloader(self) -> ImageDownloader:
        return self._downloader

    @property
    def images_enabled(self) -> bool:
        return (
            self.config.enable_image_generation
            and not self.config.use_placeholder_images
            and self._image_generator is not None
        )

    def _default_image_generator(self, api_token: str | None) -> ImageGeneratorLike | None:
        if not self.config.enable_image_generation or self.config.use_placeholder_images:
            return None
        try:
            return ReplicateImageGenerator(
                api_token=api_token,
                model_identifier=self.config.image_model,
            )
        except ValueError as exc:
            logger.warning("Image generation unavailable, placeholders will be used: %s", exc)
            return None

    # ------------------------------------------------------------------ text stage

    async def generate_story(
        self,
        request: StoryRequest,
        *,
        log: RunLogger | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> StoryDocument:
        log = log or request_logger(logger)
        log.info(
            "Generating %s story for %s (theme=%s, style=%s, age group=%s)",
            request.language_label,
            request.child_name,
            request.theme,
            request.illustration_style,
            request.age_group,
        )
        self._notify(progress_callback, "story:generating", child_name=request.child_name)
        document = await self._story_generator.generate_story(request)

        document.characters = await self._story_generator.describe_characters(
            document, request.child_name
        )
        self._notify(
            progress_callback,
            "story:generated",
            title=document.title,
            total_pages=len(document.pages),
        )
        log.info("Story '%s' ready with %d pages", document.title, len(document.pages))
        return document

    async def resolve_character_profile(
        self,
        document: StoryDocument,
        *,
        log: RunLogger | None = None,
    ) -> str | None:
        """
        Fill ``document.character_profile``.

        The text model is asked first; when that fails, or no protagonist name is known,
        the profile is extracted heuristically from the pages.
        """
        log = log or logger
        if document.character_profile:
            return document.character_profile

        if document.main_character:
            try:
                profile = await self._profile_generator.generate_profile(document.main_character)
            except Exception as exc:
                log.warning("Character profile generation failed, extracting from pages: %s", exc)
            else:
                document.character_profile = profile.description
                return document.character_profile

        extracted = extract_character_from_pages(
            document.pages, character_name=document.main_character
        )
        log.info("Character details extracted from pages for %s", extracted.name)
        document.character_profile = extracted.description or None
        if not document.main_character and extracted.name != DEFAULT_PROTAGONIST_NAME:
            document.main_character = extracted.name
        return document.character_profile

    # ------------------------------------------------------------------ image stage

    async def illustrate(
        self,
        document: StoryDocument,
        *,
        progress_callback: ProgressCallback | None = None,
        log: RunLogger | None = None,
    ) -> IllustrationResult:
        """
        Illustrate the cover and every page, resuming from the folder's progress record.
        """
        log = log or request_logger(logger)
        style = document.illustration_style

        if not self.images_enabled:
            log.info("Image generation disabled, using placeholder images")
            document.cover_image = placeholder_cover_url(document.title)
            for page in document.pages:
                page.image_url = placeholder_page_url(page.page_number, style)
            return IllustrationResult(
                document=document,
                summary=_summary(document, GenerationProgress()),
                warnings=["Image generation is disabled; placeholder images were used."],
                images_generated=0,
                used_fallback_images=True,
                skipped_pages=[],
            )

        self._notify(progress_callback, "character:resolving")
        await self.resolve_character_profile(document, log=log)
        self._notify(progress_callback, "character:ready", name=document.main_character)

        folder = document.folder_name
        progress = await asyncio.to_thread(self._progress_store.load, folder)
        run = _IllustrationRun(
            document=document,
            folder=folder,
            progress=progress,
            illustrator=Illustrator(
                self._image_generator,  # type: ignore[arg-type]
                config=self.config,
                sleep=self._sleep,
                log=log,
            ),
            log=log,
            callback=progress_callback,
            reference_image=await self._character_reference(folder, log),
        )
        if self.config.save_images:
            await self._persist_story_json(run)

        jobs: list[Callable[[], Awaitable[None]]] = []
        skipped: list[int] = []

        if progress.cover_generated:
            log.info("Cover image already generated, skipping")
            document.cover_image = await self._resumed_url(folder, COVER_FILENAME, document.cover_image)
        else:
            jobs.append(functools.partial(self._illustrate_cover, run))

        for page in document.pages:
            if progress.is_page_done(page.page_number):
                page.image_url = await self._resumed_url(
                    folder, page_filename(page.page_number), page.image_url
                )
                skipped.append(page.page_number)
            else:
                jobs.append(functools.partial(self._illustrate_page, run, page))

        log.info(
            "%d images need to be generated, %d pages already exist",
            len(jobs),
            len(skipped),
        )

        batch_size = self._rate_limiter.capacity
        for batch_index, start in enumerate(range(0, len(jobs), batch_size), start=1):
            batch = jobs[start : start + batch_size]
            waited = await self._rate_limiter.acquire(len(batch))
            if waited:
                log.info("Rate limit pause: waited %.1f seconds before batch %d", waited, batch_index)
            self._notify(progress_callback, "images:batch", batch=batch_index, size=len(batch))
            await asyncio.gather(*(job() for job in batch))

        await self._retry_failed_pages(run)

        if self.config.save_images:
            await self._persist_story_json(run)

        summary = _summary(document, progress)
        for page_number in summary["failedPages"]:
            run.warnings.append(
                f"Page {page_number} could not be illustrated; a placeholder image was used."
            )

        images = [document.cover_image, *document.page_images]
        result = IllustrationResult(
            document=document,
            summary=summary,
            warnings=run.warnings,
            images_generated=sum(
                1 for url in document.page_images if url and not is_placeholder(url)
            ),
            used_fallback_images=any(not url or is_placeholder(url) for url in images),
            skipped_pages=skipped,
        )
        log.info(
            "Generation summary: %d/%d pages successful",
            summary["successful"],
            summary["total"],
        )
        self._notify(progress_callback, "images:complete", **summary)
        return result

    async def _illustrate_cover(self, run: _IllustrationRun) -> None:
        document = run.document
        prompt = build_cover_prompt(
            title=document.title,
            cover_description=document.cover_description,
            character_profile=document.character_profile,
            illustration_style=document.illustration_style,
            main_character=document.main_character or DEFAULT_PROTAGONIST_NAME,
        )
        try:
            url = await run.illustrator.render(
                prompt,
                label="Cover",
                illustration_style=document.illustration_style,
                reference_image=run.reference_image,
            )
        except ImageGenerationError as exc:
            run.log.error("Cover image failed (%s), using placeholder", exc.error_type)
            document.cover_image = placeholder_cover_url(document.title)
            run.warnings.append(f"Cover illustration failed ({exc.error_type}); a placeholder was used.")
            self._notify(run.callback, "cover:failed", error_type=exc.error_type)
            return

        document.cover_image = await self._persist_image(run, url, COVER_FILENAME)
        run.progress.cover_generated = True
        await self._save_progress(run)
        run.log.info("Cover image created")
        self._notify(run.callback, "cover:done", url=document.cover_image)

    async def _illustrate_page(self, run: _IllustrationRun, page: Page) -> None:
        document = run.document
        prompt = build_page_prompt(
            page_number=page.page_number,
            scene_description=page.image_description,
            character_profile=document.character_profile,
            illustration_style=document.illustration_style,
            main_character=document.main_character or DEFAULT_PROTAGONIST_NAME,
        )
        await self._render_page(run, page, prompt, label=f"Page {page.page_number}")

    async def _render_page(
        self,
        run: _IllustrationRun,
        page: Page,
        prompt: str,
        *,
        label: str,
        attempts: int | None = None,
    ) -> bool:
        try:
            url = await run.illustrator.render(
                prompt,
                label=label,
                illustration_style=run.document.illustration_style,
                page_number=page.page_number,
                attempts=attempts,
                reference_image=run.reference_image,
            )
        except ImageGenerationError as exc:
            run.log.error("%s failed (%s)", label, exc.error_type)
            if not page.image_url or is_placeholder(page.image_url):
                page.image_url = placeholder_page_url(page.page_number, run.document.illustration_style)
            run.progress.mark_page_failed(page.page_number)
            await self._save_progress(run)
            self._notify(run.callback, "page:failed", page_number=page.page_number, error_type=exc.error_type)
            return False

        page.image_url = await self._persist_image(run, url, page_filename(page.page_number))
        run.progress.mark_page_succeeded(page.page_number)
        await self._save_progress(run)
        run.log.info("%s illustration created", label)
        self._notify(run.callback, "page:done", page_number=page.page_number, url=page.image_url)
        return True

    async def _retry_failed_pages(self, run: _IllustrationRun) -> None:
        pages_by_number = {page.page_number: page for page in run.document.pages}
        failed = [number for number in run.progress.failed_pages if number in pages_by_number]
        if not failed or len(failed) >= len(pages_by_number):
            return

        delay = self.config.failed_page_retry_delay
        run.log.info("Waiting %.0f seconds before retrying %d failed pages", delay, len(failed))
        self._notify(run.callback, "images:retrying_failed", failed_pages=list(failed))
        await self._sleep(delay)

        for page_number in failed:
            page = pages_by_number[page_number]
            await self._rate_limiter.acquire(1)
            prompt = build_retry_page_prompt(
                page_number=page_number,
                scene_description=page.image_description,
                character_profile=run.document.character_profile,
                illustration_style=run.document.illustration_style,
            )
            await self._render_page(run, page, prompt, label=f"Page {page_number} retry", attempts=1)

    # ------------------------------------------------------------------ persistence helpers

    async def _persist_image(self, run: _IllustrationRun, url: str, filename: str) -> str:
        if not self.config.save_images:
            return url
        return await self._store_remote_image(run.folder, filename, url, run.warnings, run.log)

    async def _store_remote_image(
        self,
        folder: str,
        filename: str,
        url: str,
        warnings: list[str],
        log: RunLogger,
    ) -> str:
        try:
            data = await self._downloader.fetch(url)
            return await asyncio.to_thread(
                self.storage.write_bytes, folder, filename, data, content_type="image/png"
            )
        except StorageError as exc:
            log.error("Could not store %s/%s: %s", folder, filename, exc)
            warnings.append(f"Could not save {filename}; using the remote image URL instead.")
            return url

    async def _persist_story_json(self, run: _IllustrationRun) -> None:
        payload = run.document.to_dict()
        try:
            await asyncio.to_thread(self.storage.write_json, run.folder, STORY_FILENAME, payload)
        except StorageError as exc:
            run.log.error("Could not save story.json for %s: %s", run.folder, exc)
            run.warnings.append("Could not save story.json.")

    async def _save_progress(self, run: _IllustrationRun) -> None:
        snapshot = GenerationProgress.from_dict(run.progress.to_dict())
        async with run.lock:
            try:
                await asyncio.to_thread(self._progress_store.save, run.folder, snapshot)
            except StorageError as exc:
                run.log.warning("Could not save generation progress for %s: %s", run.folder, exc)

    async def _resumed_url(self, folder: str, filename: str, current: str) -> str:
        if await asyncio.to_thread(self.storage.exists, folder, filename):
            return self.storage.url_for(folder, filename)
        return current or self.storage.url_for(folder, filename)

    # ------------------------------------------------------------------ entry points

    async def run(
        self,
        request: StoryRequest,
        *,
        progress_callback: ProgressCallback | None = None,
    ) -> dict[str, Any]:
        """
        Complete pipeline from request to story text and illustrations.

        Returns the ``/api/generate-story`` response body, including ``_debug``.
        """
        log = request_logger(logger)
        started = time.perf_counter()
        log.info("Story generation process started")

        document = await self.generate_story(request, log=log, progress_callback=progress_callback)
        result = await self.illustrate(document, progress_callback=progress_callback, log=log)

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        self._notify(progress_callback, "pipeline:complete", title=document.title)
        log.info("Storybook created in %dms", elapsed_ms)
        return {
            "title": document.title,
            "language": request.language_label,
            "coverImage": document.cover_image,
            "pageImages": document.page_images,
            "pages": [page.to_dict() for page in document.pages],
            "totalPages": len(document.pages),
            "characters": dict(document.characters),
            "_debug": {
                "promptsGenerated": len(document.pages) + 1,
                "imagesGenerated": result.images_generated,
                "generationTime": f"{elapsed_ms}ms",
                "usedFallbackImages": result.used_fallback_images,
                "imageGenerationDisabled": not self.config.enable_image_generation,
                "usePlaceholderImages": self.config.use_placeholder_images,
                "failedPages": result.failed_pages,
                "skippedPages": result.skipped_pages,
                "warnings": result.warnings,
            },
        }

    async def generate_images(
        self,
        document: StoryDocument,
        *,
        progress_callback: ProgressCallback | None = None,
    ) -> dict[str, Any]:
        """Illustrate an existing document; returns the ``/api/image/generate`` body."""
        log = request_logger(logger)
        result = await self.illustrate(document, progress_callback=progress_callback, log=log)

        generated = set(result.summary["pagesGenerated"])
        page_images = [page.image_url for page in document.pages if page.page_number in generated]
        return {
            "success": True,
            "title": document.title,
            "coverImage": document.cover_image,
            "pageImages": page_images,
            "pageCount": len(page_images),
            "mainCharacter": document.main_character,
            "theme": document.theme,
            "language": document.language,
            "illustrationStyle": document.illustration_style,
            "storyData": document.to_dict(),
            "allPagesGenerated": result.all_pages_generated,
            "generationSummary": result.summary,
            "warnings": result.warnings,
        }

    async def regenerate_image(
        self,
        *,
        story_id: str,
        page_index: str | int,
        feedback: Any,
        title: str | None = None,
        cover_description: str | None = None,
        page_data: Mapping[str, Any] | None = None,
        illustration_style: str | None = None,
    ) -> dict[str, Any]:
        """
        Re-render one image with feedback amendments.

        ``page_index`` is ``"cover"`` or a zero-based page index. The image is stored
        under a timestamped name so earlier versions are never overwritten.

        Raises
        ------
        StoryRequestError
            For an unknown page index or missing scene data.
        ImageGenerationError
            When every attempt failed.
        """
        log = request_logger(logger)
        folder = story_folder_name(title) if title else story_folder_name(story_id)
        is_cover = page_index == "cover"
        stored = await self._load_stored_story(folder, log)
        character_profile = stored.character_profile if stored else None
        main_character = (stored.main_character if stored else None) or DEFAULT_PROTAGONIST_NAME
        style = illustration_style or (stored.illustration_style if stored else None)

        if is_cover:
            base_prompt = build_cover_prompt(
                title=title or (stored.title if stored else story_id),
                cover_description=cover_description
                or (stored.cover_description if stored else ""),
                character_profile=character_profile,
                illustration_style=style,
                main_character=main_character,
            )
            page_number = None
            filename = COVER_FILENAME
        else:
            try:
                index = int(page_index)
            except (TypeError, ValueError) as exc:
                raise StoryRequestError(f"Invalid pageIndex: {page_index!r}") from exc
            if index < 0:
                raise StoryRequestError(f"Invalid pageIndex: {page_index!r}")
            page_number = index + 1
            scene = (page_data or {}).get("imageDescription")
            if not scene and stored and index < len(stored.pages):
                scene = stored.pages[index].image_description
            if not scene:
                raise StoryRequestError("pageData.imageDescription is required to regenerate a page.")
            base_prompt = build_page_prompt(
                page_number=page_number,
                scene_description=str(scene),
                character_profile=character_profile,
                illustration_style=style,
                main_character=main_character,
            )
            filename = page_filename(page_number)

        prompt = enhance_prompt_with_feedback(base_prompt, feedback, is_cover=is_cover)
        await self._rate_limiter.acquire(1)
        illustrator = Illustrator(self._require_image_generator(), config=self.config, sleep=self._sleep, log=log)
        url = await illustrator.render(
            prompt,
            label="Cover regeneration" if is_cover else f"Page {page_number} regeneration",
            illustration_style=style,
            page_number=page_number,
            reference_image=await self._character_reference(folder, log),
        )

        warnings: list[str] = []
        image_url = await self._store_remote_image(
            folder, regeneration_filename(filename), url, warnings, log
        )
        log.info("New image generated and stored for %s", filename)
        response: dict[str, Any] = {"success": True, "imageUrl": image_url}
        if warnings:
            response["warning"] = warnings[0]
        return response

    async def create_character_sheet(
        self,
        *,
        story_id: str,
        title: str,
        illustration_style: str,
        character_name: str | None = None,
        character_description: str | None = None,
        pages: Sequence[Page] | None = None,
    ) -> dict[str, Any]:
        """
        Render a character reference sheet and store it as ``character_profile.png``.

        When the download or upload fails the remote URL is returned with a ``warning``.
        """
        if not story_id or not title or not illustration_style:
            raise StoryRequestError("Missing required data (storyId, title, or illustrationStyle)")
        if (not character_name or not character_description) and not pages:
            raise StoryRequestError("Missing character details or pages data")

        log = request_logger(logger)
        name = character_name or ""
        description = character_description or ""
        if (not name or not description) and pages:
            log.info("Extracting character details from pages")
            extracted = extract_character_from_pages(pages, character_name=character_name)
            name = name or extracted.name
            description = description or extracted.description

        name = name or DEFAULT_PROTAGONIST_NAME
        if not description:
            raise StoryRequestError("Could not determine character description")

        prompt = build_character_sheet_prompt(
            character_name=name,
            character_description=description,
            illustration_style=illustration_style,
        )
        await self._rate_limiter.acquire(1)
        illustrator = Illustrator(self._require_image_generator(), config=self.config, sleep=self._sleep, log=log)
        remote_url = await illustrator.render(
            prompt,
            label=f"Character sheet for {name}",
            illustration_style=illustration_style,
        )

        response: dict[str, Any] = {
            "success": True,
            "characterName": name,
            "characterDescription": description,
            "characterProfilePrompt": prompt,
        }
        warnings: list[str] = []
        stored_url = await self._store_remote_image(
            story_folder_name(title), CHARACTER_SHEET_FILENAME, remote_url, warnings, log
        )
        response["characterProfileUrl"] = stored_url
        if warnings:
            response["warning"] = "Character profile image could not be saved; returning the remote URL."
        return response

    def _require_image_generator(self) -> ImageGeneratorLike:
        if self._image_generator is None:
            raise ImageGenerationError(
                "Image generation is not configured.", error_type="AUTHENTICATION_ERROR"
            )
        return self._image_generator

    async def _character_reference(self, folder: str, log: RunLogger) -> str | None:
        """The stored character sheet as a data URL, for models that accept a reference image."""
        try:
            data = await asyncio.to_thread(self.storage.read_bytes, folder, CHARACTER_SHEET_FILENAME)
        except StorageError as exc:
            log.warning("Ignoring unreadable character sheet in %s: %s", folder, exc)
            return None
        if not data:
            return None
        log.info("Using the stored character sheet as the reference image")
        return to_data_url(data)

    async def _load_stored_story(self, folder: str, log: RunLogger) -> StoryDocument | None:
        try:
            payload = await asyncio.to_thread(self.storage.read_json, folder, STORY_FILENAME)
        except StorageError as exc:
            log.warning("Ignoring unreadable story.json in %s: %s", folder, exc)
            return None
        if not isinstance(payload, Mapping):
            return None
        try:
            return StoryDocument.from_dict(payload)
        except ValueError as exc:
            log.warning("Ignoring malformed story.json in %s: %s", folder, exc)
            return None

    @staticmethod
    def _notify(
        callback: ProgressCallback | None,
        stage: str,
        **payload: Any,
    ) -> None:
        if callback is not None:
            callback(stage, payload)


def _summary(document: StoryDocument, progress: GenerationProgress) -> dict[str, Any]:
    numbers = {page.page_number for page in document.pages}
    generated = sorted(number for number in progress.pages_generated if number in numbers)
    failed = sorted(number for number in progress.failed_pages if number in numbers)
    return {
        "total": len(document.pages),
        "successful": len(generated),
        "failed": len(failed),
        "failedPages": failed,
        "pagesGenerated": generated,
    }
