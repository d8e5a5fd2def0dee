"""
PDF assembly for illustrated storybooks.
"""

from .builder import (
    PDFRenderSummary,
    StorybookPDFBuilder,
    decode_image,
    sanitize_pdf_text,
)

__all__ = [
    "PDFRenderSummary",
    "StorybookPDFBuilder",
    "decode_image",
    "sanitize_pdf_text",
]
