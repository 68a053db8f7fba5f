import asyncio
import json
import logging
import os
import sys
from typing import Dict

import httpx

repo_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
src_root = os.path.join(repo_root, "src")
if src_root not in sys.path:
    sys.path.insert(0, src_root)

try:
    from review_library.clients import StraicoClient
    from review_library.key_rotator import KeyRotator
except ModuleNotFoundError as exc:
    print("Missing review_library module. Run from repository root with venv active.")
    raise SystemExit(1) from exc


DRY_RUN_ENDPOINTS = [
    "https://api.straico.com/v2/chat/completions",
    "https://straico-proxy.example.test/v2/chat/completions",
]


def _build_transport(failure_budget: Dict[str, int]) -> httpx.MockTransport:
    """Rate-limit each dummy key as many times as its budget says, then answer."""

    def handler(request: httpx.Request) -> httpx.Response:
        key = request.headers["Authorization"].removeprefix("Bearer ")
        if request.url.host == "api.straico.com" and key == "dummy-straico-key-3":
            print(f"Dry run: primary endpoint missing for {key}, expecting fallthrough")
            return httpx.Response(404, text="Not Found")
        remaining = failure_budget.get(key, 0)
        if remaining > 0:
            failure_budget[key] = remaining - 1
            print(f"Dry run: simulating rate limit for {key}")
            return httpx.Response(429, json={"error": "rate limited"})
        print(f"Dry run: returning success for {key} via {request.url.host}")
        return httpx.Response(200, json={"answer": f"dry-run answer from {key}"})

    return httpx.MockTransport(handler)


async def run_demo() -> int:
    logging.basicConfig(level=logging.INFO)
    lib_logger = logging.getLogger("review_library")
    lib_logger.addHandler(logging.StreamHandler())

    keys = ["dummy-straico-key-1", "dummy-straico-key-2", "dummy-straico-key-3"]
    failure_budget = {"dummy-straico-key-1": 1, "dummy-straico-key-2": 1}
    rotator = KeyRotator(debug=True)

    async with httpx.AsyncClient(transport=_build_transport(failure_budget)) as http_client:
        client = StraicoClient(
            rotator=rotator,
            http_client=http_client,
            endpoints=DRY_RUN_ENDPOINTS,
            debug=True,
        )
        for attempt in range(3):
            result = await client.review(
                keys, "openai/gpt-4o-mini", "", "ping", "pong", pool_name="dry_run"
            )
            index = await rotator.get_current_index("dry_run")
            print(
                json.dumps(
                    {
                        "attempt": attempt + 1,
                        "ok": result.ok,
                        "text": result.text,
                        "key_index": result.key_index,
                        "next_start_index": index,
                    }
                )
            )

    print(f"Failover events: {len(rotator.failover_events)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(run_demo()))
