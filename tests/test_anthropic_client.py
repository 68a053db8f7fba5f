import json

import pytest

from review_library.clients import AnthropicClient


def ok_body(text: str) -> dict:
    return {"content": [{"type": "text", "text": text}], "stop_reason": "end_turn"}


@pytest.mark.asyncio
async def test_wire_format_without_thinking(upstream) -> None:
    upstream.queue(200, json=ok_body("Reviewed."))

    async with upstream.client() as http_client:
        client = AnthropicClient(http_client=http_client)
        result = await client.review(
            "sk-ant-1", "claude-3-5-haiku-latest", "Be careful.", "Q", "A"
        )

    assert result.text == "Reviewed."
    request = upstream.requests[0]
    assert str(request.url) == "https://api.anthropic.com/v1/messages"
    assert request.headers["x-api-key"] == "sk-ant-1"
    assert request.headers["anthropic-version"] == "2023-06-01"
    payload = json.loads(request.content)
    assert payload == {
        "model": "claude-3-5-haiku-latest",
        "max_tokens": 1024,
        "messages": [{"role": "user", "content": "User question:\nQ\n\nHumata answer:\nA"}],
        "system": "Be careful.",
    }


@pytest.mark.asyncio
async def test_extended_thinking_payload(upstream) -> None:
    upstream.queue(
        200,
        json={
            "content": [
                {"type": "thinking", "thinking": "hmm"},
                {"type": "text", "text": "Part one. "},
                {"type": "text", "text": "Part two."},
            ]
        },
    )

    async with upstream.client() as http_client:
        client = AnthropicClient(http_client=http_client)
        result = await client.review(
            "sk-ant-1", "claude-sonnet", "", "Q", "A", extended_thinking=True
        )

    assert result.text == "Part one. Part two."
    payload = json.loads(upstream.requests[0].content)
    assert payload["max_tokens"] == 2048
    assert payload["thinking"] == {"type": "enabled", "budget_tokens": 1024}
    assert "system" not in payload


@pytest.mark.asyncio
async def test_rejected_thinking_retries_once_without_it(upstream) -> None:
    upstream.queue(400, json={"error": {"type": "invalid_request_error"}})
    upstream.queue(200, json=ok_body("Answered without thinking."))

    async with upstream.client() as http_client:
        client = AnthropicClient(http_client=http_client)
        result = await client.review(
            "sk-ant-1", "claude-3-haiku", "", "Q", "A", extended_thinking=True
        )

    assert result.ok
    assert result.text == "Answered without thinking."
    first, retry = (json.loads(r.content) for r in upstream.requests)
    assert "thinking" in first
    assert "thinking" not in retry
    assert str(upstream.requests[1].url) == str(upstream.requests[0].url)


@pytest.mark.asyncio
async def test_failed_retry_keeps_original_status(upstream) -> None:
    upstream.queue(400, text="bad request")
    upstream.queue(500, text="still bad")

    async with upstream.client() as http_client:
        client = AnthropicClient(http_client=http_client)
        result = await client.review(
            "sk-ant-1", "claude-3-haiku", "", "Q", "A", extended_thinking=True
        )

    assert result.status == 400
    assert result.error.code == "anthropic_api_error"


@pytest.mark.asyncio
async def test_no_retry_without_thinking(upstream) -> None:
    upstream.queue(400, text="bad request")

    async with upstream.client() as http_client:
        client = AnthropicClient(http_client=http_client)
        result = await client.review("sk-ant-1", "claude-3-haiku", "", "Q", "A")

    assert result.status == 400
    assert len(upstream.requests) == 1


@pytest.mark.asyncio
async def test_legacy_completion_field(upstream) -> None:
    upstream.queue(200, json={"completion": " old style "})

    async with upstream.client() as http_client:
        client = AnthropicClient(http_client=http_client)
        result = await client.review("sk-ant-1", "claude-2", "", "Q", "A")

    assert result.text == "old style"


@pytest.mark.parametrize(
    "thinking,override,expected",
    [(False, None, 1024), (True, None, 2048), (False, 0, 1024), (True, 4096, 4096)],
)
def test_max_tokens(thinking, override, expected) -> None:
    assert AnthropicClient._max_tokens(thinking, override) == expected
