"""Shared library helpers."""

from src.libs.pdf_renderer import (
    CertificateRenderError,
    CertificateRendererProtocol,
    HttpPdfRenderer,
)

__all__ = [
    "CertificateRenderError",
    "CertificateRendererProtocol",
    "HttpPdfRenderer",
]
