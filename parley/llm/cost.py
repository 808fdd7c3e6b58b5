"""Post-stream cost reconciliation.

Billing data is eventually consistent: the generation endpoint can return
404 for a short while after a stream completes, so lookups are retried
with exponential backoff. Failures never reach the caller; the turn keeps
whatever token counts the stream reported inline.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import TYPE_CHECKING

import httpx

from parley.errors import CostLookupError
from parley.llm.base import GenerationCost
from parley.llm.stream import StreamMetadata, Usage

if TYPE_CHECKING:
    from parley.llm.base import LLMProvider

logger = logging.getLogger(__name__)


async def fetch_generation_cost(
    client: httpx.AsyncClient,
    generation_id: str,
    *,
    url: str,
    api_key: str,
    attempts: int = 3,
    base_delay: float = 0.5,
) -> GenerationCost:
    """GET cost data for *generation_id*, retrying while it is not ready.

    A 404 or a transport error is retried; the delay before attempt ``n``
    is ``base_delay * 2 ** (n - 2)`` (0.5s, 1s, ...). Any other non-2xx
    status or an undecodable body stops immediately.

    Raises:
        CostLookupError: on a terminal failure or once attempts run out.
    """
    if not generation_id:
        raise CostLookupError("generation ID is empty")
    if not api_key:
        raise CostLookupError("OPENROUTER_API_KEY not configured")

    last_error = ""
    for attempt in range(1, attempts + 1):
        if attempt > 1:
            delay = base_delay * 2 ** (attempt - 2)
            logger.info("Retrying cost fetch in %.1fs (attempt %d/%d)", delay, attempt, attempts)
            await asyncio.sleep(delay)

        logger.debug("Fetching generation cost %s (attempt %d/%d)", generation_id, attempt, attempts)
        try:
            resp = await client.get(
                url,
                params={"id": generation_id},
                headers={"Authorization": f"Bearer {api_key}"},
            )
        except httpx.HTTPError as exc:
            last_error = f"error sending request: {exc}"
            continue

        if resp.status_code == 404:
            last_error = "generation not found yet (status 404)"
            continue
        if not resp.is_success:
            raise CostLookupError(f"API returned status {resp.status_code}: {resp.text[:200]}")

        try:
            cost = GenerationCost.from_payload(resp.json()["data"])
        except (ValueError, KeyError, TypeError) as exc:
            raise CostLookupError(f"error decoding response: {exc}") from exc

        logger.info(
            "Fetched generation cost: cost=%.6f prompt=%d completion=%d latency=%sms",
            cost.total_cost,
            cost.native_tokens_prompt,
            cost.native_tokens_completion,
            cost.latency,
        )
        return cost

    raise CostLookupError(f"failed after {attempts} attempts: {last_error}")


async def reconcile_usage(
    provider: LLMProvider, metadata: StreamMetadata | None
) -> StreamMetadata | None:
    """Fold looked-up cost data into a stream's terminal metadata.

    Without a generation id the inline metadata is returned unchanged. If
    the lookup fails, the inline token counts are kept and cost, latency
    and generation time stay unset.
    """
    if metadata is None or not metadata.generation_id:
        return metadata

    try:
        cost = await provider.fetch_cost(metadata.generation_id)
    except CostLookupError as exc:
        logger.warning("Error fetching generation cost, using inline usage: %s", exc)
        return metadata

    return replace(
        metadata,
        usage=Usage(
            prompt_tokens=cost.native_tokens_prompt,
            completion_tokens=cost.native_tokens_completion,
            total_tokens=cost.total_tokens,
        ),
        total_cost=cost.total_cost,
        latency_ms=cost.latency,
        generation_time_ms=cost.generation_time,
    )
