"""
Render illustrated story documents into printable PDFs.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path
from typing import Callable, Optional, Sequence
from xml.sax.saxutils import escape

import requests
from PIL import Image, UnidentifiedImageError
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_JUSTIFY
from reportlab.lib.pagesizes import A4, LETTER
from reportlab.lib.styles import ParagraphStyle
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.pdfgen import canvas
from reportlab.platypus import Frame, Paragraph

from storybook.story_generation import Page, StoryDocument

logger = logging.getLogger(__name__)

ImageLoader = Callable[[str], bytes]

_UNSUPPORTED_SYMBOLS = re.compile(
    "["
    "\U0001F600-\U0001F64F"
    "\U0001F300-\U0001F5FF"
    "\U0001F680-\U0001F6FF"
    "\u2600-\u26FF"
    "\u2700-\u27BF"
    "]"
)

UI_TEXT = {
    "english": {"cover_title": "A Story for", "page": "Page"},
    "spanish": {"cover_title": "Un Cuento para", "page": "Página"},
}

COVER_IMAGE_RATIO = 0.75
PAGE_IMAGE_RATIO = 0.6


def sanitize_pdf_text(text: str | None) -> str:
    """Strip emoji and symbol ranges the built-in fonts cannot encode."""
    if not text:
        return ""
    return _UNSUPPORTED_SYMBOLS.sub("", text).strip()


def decode_image(data: bytes) -> Optional[Image.Image]:
    """Decode ``data`` as JPEG, then as PNG. Returns ``None`` when both fail."""
    for image_format in ("JPEG", "PNG"):
        try:
            image = Image.open(BytesIO(data), formats=[image_format])
            image.load()
            return image
        except (UnidentifiedImageError, OSError, SyntaxError):
            continue
    return None


@dataclass(frozen=True)
class PageLayoutConfig:
    cover_background: colors.Color
    page_background: colors.Color
    accent_color: colors.Color
    title_color: colors.Color
    text_color: colors.Color
    caption_color: colors.Color


DEFAULT_LAYOUT = PageLayoutConfig(
    cover_background=colors.HexColor("#F5F1FF"),
    page_background=colors.white,
    accent_color=colors.HexColor("#FFB347"),
    title_color=colors.HexColor("#6C4FD3"),
    text_color=colors.HexColor("#2F2A40"),
    caption_color=colors.HexColor("#4B506D"),
)


PAGE_SIZES = {
    "a4": A4,
    "letter": LETTER,
}


@dataclass
class PDFRenderSummary:
    page_count: int
    font: str
    missing_images: list[str] = field(default_factory=list)


class StorybookPDFBuilder:
    """
    Render a :class:`StoryDocument` into a printable PDF.

    The builder creates:
      * A cover page with the title at the top and the cover illustration below it.
      * One page per story page with the illustration on top and the text underneath.

    Images that cannot be loaded or decoded are replaced by a short notice so a broken
    URL never aborts the whole document.
    """

    def __init__(
        self,
        *,
        page_size: tuple[float, float] = PAGE_SIZES["a4"],
        margin: float = 50.0,
        layout: PageLayoutConfig = DEFAULT_LAYOUT,
        image_loader: ImageLoader | None = None,
        font_dirs: Sequence[Path | str] = (),
        request_timeout: float = 30.0,
    ) -> None:
        self.page_size = page_size
        self.margin = margin
        self.layout = layout
        self.request_timeout = request_timeout
        self._image_loader = image_loader or self._fetch_image_bytes
        self._font_dirs = [Path(entry) for entry in font_dirs]

        self.body_font, self.body_bold_font = self._configure_story_fonts()

        self.title_style = ParagraphStyle(
            name="StoryTitle",
            fontName=self.body_bold_font,
            fontSize=30,
            leading=36,
            alignment=TA_CENTER,
            textColor=self.layout.title_color,
        )
        self.subtitle_style = ParagraphStyle(
            name="StorySubtitle",
            fontName=self.body_font,
            fontSize=16,
            leading=20,
            alignment=TA_CENTER,
            textColor=self.layout.caption_color,
        )
        self.body_style = ParagraphStyle(
            name="Body",
            fontName=self.body_font,
            fontSize=14,
            leading=21,
            alignment=TA_JUSTIFY,
            textColor=self.layout.text_color,
            spaceAfter=10,
        )
        self.notice_style = ParagraphStyle(
            name="ImageNotice",
            fontName=self.body_bold_font,
            fontSize=13,
            leading=16,
            alignment=TA_CENTER,
            textColor=colors.HexColor("#B03A2E"),
        )
        self.footer_style = ParagraphStyle(
            name="Footer",
            fontName=self.body_font,
            fontSize=10,
            leading=12,
            alignment=TA_CENTER,
            textColor=self.layout.caption_color,
        )

    @property
    def content_width(self) -> float:
        return self.page_size[0] - 2 * self.margin

    @property
    def content_height(self) -> float:
        return self.page_size[1] - 2 * self.margin

    def build(self, document: StoryDocument, output_path: Path | str) -> PDFRenderSummary:
        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        data, summary = self.build_bytes(document)
        output_file.write_bytes(data)
        logger.info("PDF written to %s (%d pages)", output_file, summary.page_count)
        return summary

    def build_bytes(self, document: StoryDocument) -> tuple[bytes, PDFRenderSummary]:
        buffer = BytesIO()
        pdf = canvas.Canvas(buffer, pagesize=self.page_size)
        pdf.setTitle(sanitize_pdf_text(document.title))
        text = UI_TEXT["spanish" if document.language == "spanish" else "english"]
        summary = PDFRenderSummary(page_count=0, font=self.body_font)

        self._draw_cover_page(pdf, document, text, summary)
        summary.page_count += 1

        for page in document.pages:
            self._draw_story_page(pdf, document, page, text, summary)
            summary.page_count += 1

        pdf.save()
        return buffer.getvalue(), summary

    # ------------------------------------------------------------------ cover rendering

    def _draw_cover_page(
        self,
        pdf: canvas.Canvas,
        document: StoryDocument,
        text: dict[str, str],
        summary: PDFRenderSummary,
    ) -> None:
        width, height = self.page_size
        pdf.setFillColor(self.layout.cover_background)
        pdf.rect(0, 0, width, height, stroke=0, fill=1)

        header_height = 110.0
        header_top = height - self.margin
        intro = [Paragraph(escape(sanitize_pdf_text(document.title)), self.title_style)]
        if document.main_character:
            intro.append(
                Paragraph(
                    escape(f"{text['cover_title']} {sanitize_pdf_text(document.main_character)}"),
                    self.subtitle_style,
                )
            )
        Frame(
            self.margin,
            header_top - header_height,
            self.content_width,
            header_height,
            showBoundary=0,
        ).addFromList(intro, pdf)

        image = self._load_image(document.cover_image)
        max_height = min(self.content_height * COVER_IMAGE_RATIO, header_top - header_height - self.margin - 10)
        if image is not None:
            draw_width, draw_height = self._fit(image, self.content_width, max_height)
            x = self.margin + (self.content_width - draw_width) / 2
            y = header_top - header_height - 10 - draw_height
            pdf.drawImage(image, x, y, draw_width, draw_height, preserveAspectRatio=True, mask="auto")
        else:
            summary.missing_images.append("cover")
            self._draw_notice(pdf, "Cover Image Not Available", self.margin + self.content_height / 2)

        pdf.showPage()

    # ------------------------------------------------------------------ story pages

    def _draw_story_page(
        self,
        pdf: canvas.Canvas,
        document: StoryDocument,
        page: Page,
        text: dict[str, str],
        summary: PDFRenderSummary,
    ) -> None:
        width, height = self.page_size
        pdf.setFillColor(self.layout.page_background)
        pdf.rect(0, 0, width, height, stroke=0, fill=1)

        pdf.setFillColor(self.layout.caption_color)
        pdf.setFont(self.body_font, 12)
        pdf.drawRightString(width - self.margin, height - self.margin + 12, f"{text['page']} {page.page_number}")

        top = height - self.margin - 20
        image = self._load_image(page.image_url)
        if image is not None:
            draw_width, draw_height = self._fit(
                image, self.content_width, self.content_height * PAGE_IMAGE_RATIO
            )
            x = self.margin + (self.content_width - draw_width) / 2
            pdf.drawImage(image, x, top - draw_height, draw_width, draw_height, preserveAspectRatio=True, mask="auto")
            text_top = top - draw_height - 20
        else:
            summary.missing_images.append(f"page{page.page_number}")
            self._draw_notice(pdf, f"Image Not Available for Page {page.page_number}", top - 80)
            text_top = top - self.content_height * PAGE_IMAGE_RATIO - 20

        paragraphs = [
            Paragraph(escape(block).replace("\n", "<br/>"), self.body_style)
            for block in filter(None, (part.strip() for part in sanitize_pdf_text(page.content).split("\n\n")))
        ]
        frame_height = max(text_top - self.margin - 20, 40.0)
        Frame(self.margin, self.margin + 20, self.content_width, frame_height, showBoundary=0).addFromList(
            paragraphs, pdf
        )

        self._draw_footer(pdf, sanitize_pdf_text(document.title), width)
        pdf.showPage()

    # ------------------------------------------------------------------ helpers

    def _draw_notice(self, pdf: canvas.Canvas, message: str, y: float) -> None:
        frame = Frame(self.margin, y - 40, self.content_width, 60, showBoundary=0)
        frame.addFromList([Paragraph(escape(message), self.notice_style)], pdf)

    def _draw_footer(self, pdf: canvas.Canvas, text: str, width: float) -> None:
        footer_frame = Frame(
            self.margin,
            10,
            width - 2 * self.margin,
            24,
            showBoundary=0,
        )
        footer_frame.addFromList([Paragraph(escape(text), self.footer_style)], pdf)

    @staticmethod
    def _fit(image: ImageReader, max_width: float, max_height: float) -> tuple[float, float]:
        img_width, img_height = image.getSize()
        scale = min(max_width / img_width, max_height / img_height)
        return img_width * scale, img_height * scale

    def _load_image(self, url: str | None) -> Optional[ImageReader]:
        if not url:
            return None
        try:
            data = self._image_loader(url)
        except Exception as exc:
            logger.warning("Could not load image %s: %s", url[:80], exc)
            return None

        decoded = decode_image(data)
        if decoded is None:
            logger.warning("Image %s is neither JPEG nor PNG", url[:80])
            return None
        return ImageReader(decoded)

    def _fetch_image_bytes(self, url: str) -> bytes:
        response = requests.get(url, timeout=self.request_timeout)
        response.raise_for_status()
        return response.content

    def _configure_story_fonts(self) -> tuple[str, str]:
        story_options = [
            (
                "Montserrat",
                "Montserrat-Bold",
                ["Montserrat-Regular.ttf", "Montserrat.ttf"],
                ["Montserrat-Bold.ttf"],
            ),
            (
                "ComicSansMS",
                "ComicSansMS-Bold",
                ["Comic Sans MS.ttf", "ComicSansMS.ttf"],
                ["Comic Sans MS Bold.ttf", "ComicSansMS-Bold.ttf"],
            ),
        ]

        search_roots = [
            *self._font_dirs,
            Path("public/fonts"),
            Path("/Library/Fonts"),
            Path.home() / "Library" / "Fonts",
            Path("C:/Windows/Fonts"),
            Path("/usr/share/fonts/truetype"),
            Path("/usr/local/share/fonts"),
        ]

        for regular_name, bold_name, regular_candidates, bold_candidates in story_options:
            regular_ready = self._register_font_if_available(regular_name, regular_candidates, search_roots)
            bold_ready = self._register_font_if_available(bold_name, bold_candidates, search_roots)
            if regular_ready and bold_ready:
                return regular_name, bold_name

        logger.info("Custom fonts not found, falling back to Helvetica")
        return "Helvetica", "Helvetica-Bold"

    @staticmethod
    def _register_font_if_available(
        font_name: str,
        candidate_filenames: Sequence[str],
        search_roots: Sequence[Path],
    ) -> bool:
        if font_name in pdfmetrics.getRegisteredFontNames():
            return True

        for root in search_roots:
            for candidate in candidate_filenames:
                font_path = root / candidate
                if font_path.exists():
                    try:
                        pdfmetrics.registerFont(TTFont(font_name, str(font_path)))
                        return True
                    except Exception as exc:
                        logger.warning("Could not register font %s: %s", font_path, exc)
                        continue
        return False
