"""
HTML-to-PDF render client for certificate artifacts.

Certificates are drawn as HTML and converted by a headless-Chromium render
service reachable over HTTP. Any failure is fatal to the issuing operation,
so this client raises instead of returning partial output.
"""

from __future__ import annotations

import asyncio
from typing import Protocol

import httpx
import structlog
from src.core.config import get_settings
from src.domain.models import CertificateData, LevelCertificateData
from src.libs.certificate_templates import (
    build_certificate_html,
    build_level_certificate_html,
)

logger = structlog.get_logger(__name__)

PDF_MAGIC = b"%PDF"


class CertificateRenderError(Exception):
    """Raised when a certificate artifact could not be produced."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CertificateRendererProtocol(Protocol):
    """Protocol for certificate renderers (allows fakes in tests)."""

    async def render_certificate(self, data: CertificateData) -> bytes:
        """Render a course certificate to PDF bytes."""
        ...

    async def render_level_certificate(self, data: LevelCertificateData) -> bytes:
        """Render a certification-level certificate to PDF bytes."""
        ...


class HttpPdfRenderer:
    """Posts certificate HTML to the render service and returns the PDF body."""

    def __init__(
        self,
        render_url: str | None = None,
        timeout_seconds: int | None = None,
        max_retries: int = 2,
    ) -> None:
        settings = get_settings()
        self.render_url = render_url or settings.pdf_render_url
        self.timeout = (
            timeout_seconds if timeout_seconds is not None else settings.pdf_render_timeout_seconds
        )
        self.max_retries = max(1, max_retries)

    async def render_certificate(self, data: CertificateData) -> bytes:
        return await self._render(
            build_certificate_html(data), certificate_number=data.certificate_number
        )

    async def render_level_certificate(self, data: LevelCertificateData) -> bytes:
        return await self._render(
            build_level_certificate_html(data), certificate_number=data.certificate_number
        )

    async def _render(self, html: str, *, certificate_number: str) -> bytes:
        files = {"files": ("index.html", html.encode("utf-8"), "text/html")}
        form = {"paperWidth": "8.27", "paperHeight": "11.7", "printBackground": "true"}
        last_error: CertificateRenderError | None = None

        for attempt in range(self.max_retries):
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.render_url, files=files, data=form)
            except httpx.TimeoutException:
                last_error = CertificateRenderError("PDF render timed out")
                await logger.awarning(
                    "pdf_render_timeout",
                    certificate_number=certificate_number,
                    attempt=attempt + 1,
                )
            except httpx.RequestError as exc:
                last_error = CertificateRenderError(f"PDF render request failed: {exc}")
                await logger.awarning(
                    "pdf_render_request_error",
                    certificate_number=certificate_number,
                    error=str(exc),
                    attempt=attempt + 1,
                )
            else:
                if response.status_code == 200:
                    return self._validated_body(response.content, certificate_number)
                if response.status_code == 429:
                    last_error = CertificateRenderError(
                        "Render service rate limited", status_code=response.status_code
                    )
                    await logger.awarning(
                        "pdf_render_rate_limited",
                        certificate_number=certificate_number,
                        attempt=attempt + 1,
                    )
                elif response.status_code < 500:
                    raise CertificateRenderError(
                        f"Render service rejected document: {response.status_code}",
                        status_code=response.status_code,
                    )
                else:
                    last_error = CertificateRenderError(
                        f"Render service error: {response.status_code}",
                        status_code=response.status_code,
                    )
                    await logger.awarning(
                        "pdf_render_server_error",
                        certificate_number=certificate_number,
                        status_code=response.status_code,
                        attempt=attempt + 1,
                    )

            if attempt < self.max_retries - 1:
                await asyncio.sleep(2**attempt)

        raise last_error or CertificateRenderError("PDF render failed")

    def _validated_body(self, body: bytes, certificate_number: str) -> bytes:
        if not body.startswith(PDF_MAGIC):
            raise CertificateRenderError("Render service returned a non-PDF body")
        logger.info("pdf_rendered", certificate_number=certificate_number, size=len(body))
        return body
