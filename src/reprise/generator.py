# Copyright (c) Syntropy Systems
"""Generator collaborator: turns a scenario prompt into a test file."""
from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Protocol, cast

import httpx
from pydantic import ValidationError

from reprise.actions import ActionRetrier, RetryOptions
from reprise.errors import GenerationError
from reprise.models.artifact import Artifact, ArtifactMeta
from reprise.models.base import RepriseBaseModel
from reprise.models.scenario import TAG_PATTERN
from reprise.models.stats import utc_now

if TYPE_CHECKING:
    from pathlib import Path

    from reprise.cancellation import CancellationToken
    from reprise.models.base import JSONObject

FENCE_PATTERN = re.compile(r"^```[a-zA-Z]*\n(?P<body>.*?)\n?```\s*$", re.DOTALL)

REQUEST_RETRIES = 3
REQUEST_RETRY_DELAY_MS = 1000

SYNTAX_CHECKS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"import.*@playwright/test", re.IGNORECASE), "Missing Playwright test imports"),
    (re.compile(r"test\(['\"].*['\"]", re.IGNORECASE), "No test function declarations found"),
    (re.compile(r"expect\(", re.IGNORECASE), "No assertions found"),
    (re.compile(r"page\.[a-zA-Z]+", re.IGNORECASE), "No page interactions found"),
    (re.compile(r"await", re.IGNORECASE), "No async/await usage found"),
)


class Generator(Protocol):
    """Produces an executable artifact from a prompt.

    Called once per attempt, so it must be safe to call repeatedly with the
    same prompt and tag.
    """

    async def generate(
        self,
        prompt: str,
        tag: str,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> Artifact:
        ...


class GenerationRequest(RepriseBaseModel):
    """Body posted to the generation endpoint."""

    prompt: str
    tag: str


class GenerationResponse(RepriseBaseModel):
    """Body expected back from the generation endpoint."""

    content: str


def validate_inputs(prompt: str, tag: str) -> None:
    """Reject prompts and tags that cannot produce a usable file."""
    if not prompt.strip():
        msg = "Prompt cannot be empty"
        raise GenerationError(msg)
    if not tag.strip():
        msg = "Test name cannot be empty"
        raise GenerationError(msg)
    if not TAG_PATTERN.match(tag):
        msg = "Test name contains invalid characters"
        raise GenerationError(
            msg, "Use only letters, numbers, underscores, and hyphens"
        )


def is_transient(error: Exception) -> bool:
    """True for transport failures and 5xx responses."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code >= 500
    return isinstance(error, httpx.RequestError)


def strip_code_fence(content: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    match = FENCE_PATTERN.match(content.strip())
    if match:
        return match.group("body")
    return content


def syntax_warnings(content: str) -> list[str]:
    """Return a warning for every expected pattern the content lacks."""
    return [message for pattern, message in SYNTAX_CHECKS if not pattern.search(content)]


def normalize(content: str) -> str:
    """Trim trailing spaces and collapse runs of blank lines."""
    lines = [line.rstrip() for line in content.splitlines()]
    text = re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip()
    return text + "\n"


class HttpGenerator:
    """Generator backed by an HTTP generation service.

    Posts ``{"prompt", "tag"}`` as JSON and expects ``{"content"}`` back.
    The result is written to ``<output_dir>/<tag><extension>`` with a
    ``.meta.json`` file beside it.

    Transport errors and 5xx responses are retried through an
    :class:`ActionRetrier` with exponential backoff; other failures are
    raised on the first attempt.
    """

    def __init__(
        self,
        url: str,
        output_dir: Path,
        client: httpx.AsyncClient | None = None,
        timeout: float = 120.0,
        extension: str = ".spec.ts",
        logger: logging.Logger | None = None,
        retrier: ActionRetrier | None = None,
        retry_options: RetryOptions | None = None,
    ) -> None:
        self.url = url
        self.output_dir = output_dir
        self.extension = extension
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self.retrier = retrier or ActionRetrier(logger=self.logger)
        self.retry_options = retry_options or RetryOptions(
            retries=REQUEST_RETRIES,
            delay_ms=REQUEST_RETRY_DELAY_MS,
            timeout_ms=int(timeout * 1000),
        )

    async def aclose(self) -> None:
        """Close the HTTP client if this generator created it."""
        if self._owns_client:
            await self._client.aclose()

    async def generate(
        self,
        prompt: str,
        tag: str,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> Artifact:
        """Request test code for ``prompt`` and write it to disk."""
        validate_inputs(prompt, tag)
        self._check_cancelled(cancel_token, tag)

        content = await self._request(prompt, tag, cancel_token)
        self._check_cancelled(cancel_token, tag)

        content = strip_code_fence(content)
        if not content.strip():
            msg = "Generator returned empty content"
            raise GenerationError(msg, f"tag={tag}")

        warnings = syntax_warnings(content)
        content = normalize(content)
        path = self._write(tag, prompt, content, warnings)

        if warnings:
            self.logger.warning("Warnings for %s: %s", tag, ", ".join(warnings))
        self.logger.info("Test generated: %s", path)
        return Artifact(tag=tag, path=path, content=content, warnings=warnings)

    async def _request(
        self,
        prompt: str,
        tag: str,
        cancel_token: CancellationToken | None = None,
    ) -> str:
        body = GenerationRequest(prompt=prompt, tag=tag).model_dump()

        async def post() -> httpx.Response:
            response = await self._client.post(self.url, json=body)
            return response.raise_for_status()

        options = self.retry_options.with_overrides(
            retry_if=is_transient, cancel_token=cancel_token
        )
        outcome = await self.retrier.execute(post, options, "GenerateRequest", self.url)
        if not outcome.success or outcome.value is None:
            cause = outcome.error.__cause__ if outcome.error is not None else None
            msg = "Generation request failed"
            if isinstance(cause, httpx.HTTPStatusError):
                raise GenerationError(
                    msg,
                    f"HTTP {cause.response.status_code}: {cause.response.text[:200]}",
                ) from cause
            raise GenerationError(msg, str(cause or outcome.error)) from cause

        try:
            payload = cast("JSONObject", outcome.value.json())
            return GenerationResponse.model_validate(payload).content
        except (ValueError, ValidationError) as e:
            msg = "Generator returned an invalid response"
            raise GenerationError(msg, str(e)) from e

    def _write(self, tag: str, prompt: str, content: str, warnings: list[str]) -> Path:
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            path = self.output_dir / f"{tag}{self.extension}"
            _ = path.write_text(content)
            meta = ArtifactMeta(
                tag=tag,
                generated_at=utc_now().isoformat(),
                prompt=prompt,
                lines=len(content.splitlines()),
                size=len(content.encode()),
                warnings=warnings,
                source=self.url,
            )
            meta_path = path.with_name(path.name + ".meta.json")
            _ = meta_path.write_text(meta.model_dump_json(indent=2))
        except OSError as e:
            msg = "Failed to write test file"
            raise GenerationError(msg, str(e)) from e
        return path

    @staticmethod
    def _check_cancelled(cancel_token: CancellationToken | None, tag: str) -> None:
        if cancel_token is not None and cancel_token.cancelled:
            msg = "Generation cancelled"
            raise GenerationError(msg, f"tag={tag}, reason={cancel_token.reason}")
