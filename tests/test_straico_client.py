import json

import pytest

from review_library.clients import StraicoClient
from review_library.clients.straico_client import STRAICO_TEXT_PATHS
from review_library.key_rotator import KeyRotator

SHAPES = [
    {"choices": [{"message": {"content": "Same text."}}]},
    {"choices": [{"text": "Same text."}]},
    {"answer": "Same text."},
    {"response": "Same text."},
    {"message": "Same text."},
    {"output": "Same text."},
]


def test_every_recognized_shape_is_covered() -> None:
    assert len(SHAPES) == len(STRAICO_TEXT_PATHS)


@pytest.mark.asyncio
@pytest.mark.parametrize("body", SHAPES)
async def test_response_shapes_extract_the_same_text(upstream, body) -> None:
    upstream.queue(200, json=body)

    async with upstream.client() as http_client:
        client = StraicoClient(http_client=http_client)
        result = await client.review("sk-straico", "openai/gpt-4o", "", "Q", "A")

    assert result.ok
    assert result.text == "Same text."


@pytest.mark.asyncio
async def test_payload_uses_text_blocks(upstream) -> None:
    upstream.queue(200, json={"answer": "ok"})

    async with upstream.client() as http_client:
        client = StraicoClient(http_client=http_client)
        await client.review("sk-straico", "openai/gpt-4o", "System.", "Q", "A")

    request = upstream.requests[0]
    assert str(request.url) == "https://api.straico.com/v2/chat/completions"
    assert request.headers["Authorization"] == "Bearer sk-straico"
    payload = json.loads(request.content)
    assert payload["model"] == "openai/gpt-4o"
    assert payload["messages"][0] == {
        "role": "system",
        "content": [{"type": "text", "text": "System."}],
    }
    assert payload["messages"][1]["content"][0]["type"] == "text"


CANDIDATES = [
    "https://api.straico.com/v2/chat/completions",
    "https://straico-proxy.example.test/v2/chat/completions",
]


def test_default_endpoint_is_v2_only() -> None:
    assert StraicoClient.default_endpoints == ("https://api.straico.com/v2/chat/completions",)


@pytest.mark.asyncio
async def test_falls_through_to_next_candidate_on_404(upstream) -> None:
    upstream.queue(404, text="Not Found")
    upstream.queue(200, json={"choices": [{"message": {"content": "from the second candidate"}}]})

    async with upstream.client() as http_client:
        client = StraicoClient(http_client=http_client, endpoints=CANDIDATES)
        result = await client.review("sk-straico", "m", "", "Q", "A")

    assert result.ok
    assert result.text == "from the second candidate"
    assert [str(r.url) for r in upstream.requests] == CANDIDATES


@pytest.mark.asyncio
async def test_default_client_does_not_invent_a_second_endpoint(upstream) -> None:
    upstream.queue(404, text="Not Found")

    async with upstream.client() as http_client:
        client = StraicoClient(http_client=http_client)
        result = await client.review("sk-straico", "m", "", "Q", "A")

    assert result.status == 404
    assert [str(r.url) for r in upstream.requests] == [CANDIDATES[0]]


@pytest.mark.asyncio
async def test_all_endpoints_missing_surfaces_last_status(upstream) -> None:
    upstream.queue(405, text="")
    upstream.queue(404, text="")

    async with upstream.client() as http_client:
        client = StraicoClient(http_client=http_client, endpoints=CANDIDATES)
        result = await client.review("sk-straico", "m", "", "Q", "A")

    assert not result.ok
    assert result.error.code == "straico_api_error"
    assert result.status == 404


@pytest.mark.asyncio
async def test_empty_answer_does_not_try_next_endpoint(upstream) -> None:
    upstream.queue(200, json={"answer": ""})

    async with upstream.client() as http_client:
        client = StraicoClient(http_client=http_client, endpoints=CANDIDATES)
        result = await client.review("sk-straico", "m", "", "Q", "A")

    assert result.status == 502
    assert len(upstream.requests) == 1


@pytest.mark.asyncio
async def test_straico_rotates_too(upstream) -> None:
    upstream.queue(403, json={"error": "forbidden"})
    upstream.queue(200, json={"answer": "second key"})
    rotator = KeyRotator()

    async with upstream.client() as http_client:
        client = StraicoClient(rotator=rotator, http_client=http_client)
        result = await client.review(
            ["s0", "s1"], "m", "", "Q", "A", pool_name="local_first_straico"
        )

    assert result.text == "second key"
    assert await rotator.get_current_index("local_first_straico") == 0
    assert rotator.failover_events_for("local_first_straico")[0].status == 403
