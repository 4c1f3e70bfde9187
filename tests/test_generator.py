# Copyright (c) Syntropy Systems
"""Tests for the HTTP generator."""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from reprise.actions import ActionRetrier
from reprise.cancellation import CancellationToken
from reprise.errors import GenerationError
from reprise.generator import (
    HttpGenerator,
    normalize,
    strip_code_fence,
    syntax_warnings,
    validate_inputs,
)

GOOD_TEST = """import { test, expect } from '@playwright/test';

test('login works', async ({ page }) => {
  await page.goto('https://qa.example.com');
  await expect(page).toHaveTitle(/Home/);
});
"""

URL = "http://generator.test/generate"


async def no_sleep(seconds: float) -> None:
    """Skip retry backoff."""


def make_generator(
    output_dir: Path,
    handler: httpx.MockTransport,
) -> HttpGenerator:
    """HttpGenerator over a mock transport, retrying without delay."""
    client = httpx.AsyncClient(transport=handler)
    return HttpGenerator(URL, output_dir, client=client, retrier=ActionRetrier(sleep=no_sleep))


def respond_with(content: str, requests: list[httpx.Request] | None = None) -> httpx.MockTransport:
    """Transport answering every request with the given content."""

    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return httpx.Response(200, json={"content": content})

    return httpx.MockTransport(handler)


class TestHelpers:
    """Tests for content helpers."""

    def test_strip_code_fence(self) -> None:
        """Test a fenced block is unwrapped."""
        assert strip_code_fence("```typescript\nconst a = 1;\n```") == "const a = 1;"

    def test_unfenced_unchanged(self) -> None:
        """Test plain content is left alone."""
        assert strip_code_fence("const a = 1;") == "const a = 1;"

    def test_syntax_warnings(self) -> None:
        """Test a complete test has no warnings and an empty one has all."""
        assert syntax_warnings(GOOD_TEST) == []
        assert len(syntax_warnings("console.log(1)")) == 5

    def test_normalize(self) -> None:
        """Test trailing spaces and blank runs are cleaned up."""
        assert normalize("a  \n\n\n\nb\n\n") == "a\n\nb\n"

    def test_validate_inputs(self) -> None:
        """Test bad prompts and tags are rejected."""
        validate_inputs("prompt", "login_flow-2")
        with pytest.raises(GenerationError, match="Prompt cannot be empty"):
            validate_inputs("  ", "login")
        with pytest.raises(GenerationError, match="invalid characters"):
            validate_inputs("prompt", "log in")


class TestHttpGenerator:
    """Tests for HttpGenerator.generate."""

    @pytest.mark.asyncio
    async def test_writes_file_and_meta(self, temp_dir: Path) -> None:
        """Test the generated test and its metadata land in the output directory."""
        requests: list[httpx.Request] = []
        generator = make_generator(temp_dir / "out", respond_with(GOOD_TEST, requests))

        artifact = await generator.generate("log in", "login")

        assert artifact.path == temp_dir / "out" / "login.spec.ts"
        assert artifact.path.read_text() == artifact.content
        assert artifact.warnings == []
        meta = json.loads((temp_dir / "out" / "login.spec.ts.meta.json").read_text())
        assert meta["tag"] == "login"
        assert meta["prompt"] == "log in"
        assert meta["source"] == URL
        assert json.loads(requests[0].content) == {"prompt": "log in", "tag": "login"}

    @pytest.mark.asyncio
    async def test_fenced_response_unwrapped(self, temp_dir: Path) -> None:
        """Test markdown fences from the service are removed."""
        generator = make_generator(temp_dir, respond_with(f"```typescript\n{GOOD_TEST}```"))

        artifact = await generator.generate("log in", "login")

        assert not artifact.content.startswith("```")
        assert artifact.content.startswith("import { test, expect }")

    @pytest.mark.asyncio
    async def test_warnings_reported(self, temp_dir: Path) -> None:
        """Test incomplete tests are written with warnings."""
        generator = make_generator(temp_dir, respond_with("console.log('hi');"))

        artifact = await generator.generate("say hi", "hi")

        assert "No assertions found" in artifact.warnings
        assert artifact.path.exists()

    @pytest.mark.asyncio
    async def test_empty_content_fails(self, temp_dir: Path) -> None:
        """Test an empty response is a generation failure."""
        generator = make_generator(temp_dir, respond_with("   "))

        with pytest.raises(GenerationError, match="empty content"):
            _ = await generator.generate("log in", "login")

    @pytest.mark.asyncio
    async def test_http_error_status(self, temp_dir: Path) -> None:
        """Test a 5xx response on every attempt becomes a GenerationError."""
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(503, text="busy")

        generator = make_generator(temp_dir, httpx.MockTransport(handler))

        with pytest.raises(GenerationError, match="HTTP 503: busy"):
            _ = await generator.generate("log in", "login")

        assert len(requests) == 3

    @pytest.mark.asyncio
    async def test_transient_error_then_success(self, temp_dir: Path) -> None:
        """Test a 503 followed by a 200 produces the artifact."""
        statuses = [503, 200]
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            status = statuses.pop(0)
            if status != 200:
                return httpx.Response(status, text="busy")
            return httpx.Response(200, json={"content": GOOD_TEST})

        generator = make_generator(temp_dir, httpx.MockTransport(handler))

        artifact = await generator.generate("log in", "login")

        assert len(requests) == 2
        assert artifact.path.exists()

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, temp_dir: Path) -> None:
        """Test a 4xx response fails on the first request."""
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(400, text="bad prompt")

        generator = make_generator(temp_dir, httpx.MockTransport(handler))

        with pytest.raises(GenerationError, match="HTTP 400"):
            _ = await generator.generate("log in", "login")

        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_transport_error(self, temp_dir: Path) -> None:
        """Test connection failures are retried, then become a GenerationError."""
        attempts: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            msg = "connection refused"
            raise httpx.ConnectError(msg, request=request)

        generator = make_generator(temp_dir, httpx.MockTransport(handler))

        with pytest.raises(GenerationError, match="connection refused"):
            _ = await generator.generate("log in", "login")

        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_invalid_response_body(self, temp_dir: Path) -> None:
        """Test a body without content is rejected."""
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"code": 1}))
        generator = make_generator(temp_dir, transport)

        with pytest.raises(GenerationError, match="invalid response"):
            _ = await generator.generate("log in", "login")

    @pytest.mark.asyncio
    async def test_cancelled_token_skips_request(self, temp_dir: Path) -> None:
        """Test nothing is requested once the token is cancelled."""
        requests: list[httpx.Request] = []
        generator = make_generator(temp_dir, respond_with(GOOD_TEST, requests))
        token = CancellationToken()
        token.cancel("timed out")

        with pytest.raises(GenerationError, match="cancelled"):
            _ = await generator.generate("log in", "login", cancel_token=token)

        assert requests == []
