# src/query/failover_client.py — v1
"""JSON-RPC query client with multi-node failover (httpx).

Nodes are tried in order. Each node gets ``max_retries + 1`` attempts with
exponential backoff ``min(base * 2**retry, max)`` between them; each
attempt has its own timeout and is raced against the session's cancel
event. Array and object results are truncated to ``max_items`` entries.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping, Sequence
from typing import Any, Awaitable, Callable
from urllib.parse import urlparse

import httpx

from partledger.config.settings import Settings
from partledger.core.errors import (
    AllNodesFailedError,
    NodeResponseError,
    QueryCancelledError,
)
from partledger.core.models import CompactManifest, ContentRecord
from partledger.manifest.compact import METADATA_KEY, extract_manifest_from_post
from partledger.manifest.tags import IDENTITY_TAG, series_bucket_tag
from partledger.query.base_query_client import BaseQueryClient
from partledger.query.session import SearchSession, SessionGuard

logger = logging.getLogger(__name__)

DEFAULT_NODES: tuple[str, ...] = (
    "https://api.hive.blog",
    "https://api.openhive.network",
    "https://hive-api.arcange.eu",
    "https://rpc.ausbit.dev",
    "https://api.hivekings.com",
    "https://anyx.io",
    "https://rpc.ecency.com",
    "https://api.deathwing.me",
    "https://hive.roelandp.nl",
)
DEFAULT_MAX_RETRIES = 2
DEFAULT_TIMEOUT_S = 5.0
MAX_ITEMS = 1000
PAGE_LIMIT = 20
MAX_PAGES = 5

ProgressCallback = Callable[[int, int, str, int], Any]


def rpc_request(method: str, params: Any) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "method": method, "params": params, "id": 1}


def truncate_result(result: Any, max_items: int) -> Any:
    """Cap list length or object key count at max_items."""
    if isinstance(result, list) and len(result) > max_items:
        logger.warning("Response truncated: %d items -> %d", len(result), max_items)
        return result[:max_items]
    if isinstance(result, dict) and len(result) > max_items:
        logger.warning("Response truncated: %d keys -> %d", len(result), max_items)
        return dict(list(result.items())[:max_items])
    return result


def _tags_of(post: Mapping[str, Any]) -> list[str]:
    metadata = post.get("json_metadata")
    if isinstance(metadata, str):
        try:
            metadata = json.loads(metadata)
        except ValueError:
            return []
    if not isinstance(metadata, Mapping):
        return []
    tags = metadata.get("tags") or []
    return [str(t).lower() for t in tags if isinstance(t, str)]


def part_number_of(record: ContentRecord) -> int | None:
    """Part number a published entry declares, from metadata or its marker."""
    metadata = record.json_metadata
    if isinstance(metadata, Mapping):
        embedded = metadata.get(METADATA_KEY)
        if isinstance(embedded, Mapping):
            number = embedded.get("current_part") or embedded.get("part_number")
            if isinstance(number, int):
                return number
    found = extract_manifest_from_post(record)
    if isinstance(found, CompactManifest):
        return found.current_part
    return None


class FailoverQueryClient(BaseQueryClient):
    """Failover JSON-RPC client over a list of ledger API nodes.

    Args:
        nodes: Node URLs, tried in order.
        max_retries: Retries per node after the first attempt.
        timeout_s: Per-attempt timeout.
        retry_base_s: Backoff base between retries on one node.
        retry_max_s: Backoff ceiling.
        max_items: Result size ceiling.
        page_limit: Page size for ranked-post searches.
        max_pages: Default page count for ranked-post searches.
        identity_tag: Primary tag every series entry carries.
        client: Shared httpx.AsyncClient (created when omitted).
        sleep: Awaitable sleep, injectable for tests.
        progress: Callback (node_index, node_count, node_name, retry).
    """

    def __init__(
        self,
        nodes: Sequence[str] = DEFAULT_NODES,
        max_retries: int = DEFAULT_MAX_RETRIES,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        retry_base_s: float = 0.1,
        retry_max_s: float = 1.0,
        max_items: int = MAX_ITEMS,
        page_limit: int = PAGE_LIMIT,
        max_pages: int = MAX_PAGES,
        identity_tag: str = IDENTITY_TAG,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        progress: ProgressCallback | None = None,
    ) -> None:
        if not nodes:
            raise ValueError("At least one query node is required")
        self._nodes = list(nodes)
        self._max_retries = max_retries
        self._timeout = timeout_s
        self._retry_base = retry_base_s
        self._retry_max = retry_max_s
        self._max_items = max_items
        self._page_limit = page_limit
        self._max_pages = max_pages
        self._identity_tag = identity_tag
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            headers={"Content-Type": "application/json"}
        )
        self._sleep = sleep
        self._progress = progress
        self._sessions = SessionGuard()

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> FailoverQueryClient:
        return cls(
            nodes=settings.query_nodes_list,
            max_retries=settings.query_max_retries,
            timeout_s=settings.query_timeout_s,
            retry_base_s=settings.query_retry_base_s,
            retry_max_s=settings.query_retry_max_s,
            max_items=settings.query_max_items,
            page_limit=settings.query_page_limit,
            max_pages=settings.query_max_pages,
            identity_tag=settings.identity_tag,
            **kwargs,
        )

    async def __aenter__(self) -> FailoverQueryClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # === PUBLIC API ===

    async def query(self, params: Mapping[str, Any]) -> Any:
        """Run one JSON-RPC request with failover.

        Raises:
            QueryBusyError: If another request is in flight.
            QueryCancelledError: If cancel_current_search() was called.
            AllNodesFailedError: If every attempt on every node failed.
        """
        session = self._sessions.open()
        try:
            return await self._query_in_session(params, session)
        finally:
            self._sessions.close(session)

    async def fetch_content(self, author: str, locator: str) -> ContentRecord | None:
        result = await self.query(rpc_request("condenser_api.get_content", [author, locator]))
        if not isinstance(result, Mapping) or not result.get("author"):
            return None
        return ContentRecord.model_validate(dict(result))

    def cancel_current_search(self) -> bool:
        return self._sessions.cancel_active()

    async def search_by_tags(
        self, tags: Sequence[str], max_pages: int | None = None
    ) -> list[ContentRecord]:
        """Page through entries under the identity tag, keeping those carrying every tag.

        All pages run inside one session so a cancel stops the whole search.
        """
        pages = self._max_pages if max_pages is None else max_pages
        wanted = [t.lower() for t in tags]
        session = self._sessions.open()
        collected: list[Mapping[str, Any]] = []
        start: tuple[str, str] | None = None
        try:
            for page in range(pages):
                params: dict[str, Any] = {
                    "sort": "created",
                    "tag": self._identity_tag,
                    "observer": "",
                    "limit": self._page_limit,
                }
                if start is not None:
                    params["start_author"], params["start_permlink"] = start

                posts = await self._query_in_session(
                    rpc_request("bridge.get_ranked_posts", params), session
                )
                if not isinstance(posts, list) or not posts:
                    break
                # Later pages start with the previous page's last entry.
                fresh = posts if page == 0 else posts[1:]
                if not fresh:
                    break
                collected.extend(p for p in fresh if isinstance(p, Mapping))

                last = posts[-1]
                start = (last.get("author", ""), last.get("permlink", ""))
                if len(posts) < self._page_limit:
                    break
        finally:
            self._sessions.close(session)

        matches = [p for p in collected if all(t in _tags_of(p) for t in wanted)]
        logger.info(
            "Tag search %s: %d scanned, %d matched", list(tags), len(collected), len(matches)
        )
        return [ContentRecord.model_validate(dict(p)) for p in matches if p.get("author")]

    async def find_series_parts(
        self, series_id: str, max_pages: int | None = None
    ) -> list[ContentRecord]:
        """Published entries of one series, ordered by part number."""
        candidates = await self.search_by_tags(
            [self._identity_tag, series_bucket_tag(series_id)], max_pages=max_pages
        )
        numbered: list[tuple[int, ContentRecord]] = []
        for record in candidates:
            found = extract_manifest_from_post(record)
            if found is None or found.series_id != series_id:
                continue
            number = part_number_of(record)
            if number is not None:
                numbered.append((number, record))
        numbered.sort(key=lambda item: item[0])
        return [record for _, record in numbered]

    # === FAILOVER ===

    async def _query_in_session(
        self, params: Mapping[str, Any], session: SearchSession
    ) -> Any:
        method = str(params.get("method", "unknown"))
        last_error: Exception | None = None

        for node_index, url in enumerate(self._nodes):
            node_name = urlparse(url).netloc or url
            for retry in range(self._max_retries + 1):
                if session.cancelled:
                    raise QueryCancelledError("Search cancelled by user")
                self._report(node_index + 1, node_name, retry)
                try:
                    result = await self._attempt(url, params, session)
                    return truncate_result(result, self._max_items)
                except (httpx.HTTPError, NodeResponseError, ValueError) as exc:
                    last_error = exc
                    logger.warning("Attempt failed on %s (retry %d): %s", node_name, retry, exc)
                if retry < self._max_retries:
                    await self._sleep(min(self._retry_base * 2 ** retry, self._retry_max))

        logger.error("All %d nodes failed for %s", len(self._nodes), method)
        raise AllNodesFailedError(method, last_error)

    async def _attempt(
        self, url: str, params: Mapping[str, Any], session: SearchSession
    ) -> Any:
        request = asyncio.ensure_future(
            self._client.post(url, json=dict(params), timeout=self._timeout)
        )
        cancelled = asyncio.ensure_future(session.cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {request, cancelled},
                timeout=self._timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            request.cancel()
            raise
        finally:
            cancelled.cancel()

        if request not in done:
            request.cancel()
            await asyncio.gather(request, return_exceptions=True)
            if session.cancelled:
                raise QueryCancelledError("Search cancelled by user")
            raise httpx.TimeoutException(f"No response within {self._timeout}s")

        response = request.result()
        if response.status_code >= 400:
            raise NodeResponseError(f"HTTP {response.status_code}")
        data = response.json()
        if not isinstance(data, Mapping):
            raise NodeResponseError("Response body is not a JSON object")
        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, Mapping) else error
            raise NodeResponseError(f"RPC error: {message}")
        result = data.get("result")
        if result is None:
            raise NodeResponseError("Invalid response: missing result field")
        if not isinstance(result, (list, dict)):
            raise NodeResponseError(
                f"Invalid response: result is {type(result).__name__}, expected array or object"
            )
        return result

    def _report(self, node_index: int, node_name: str, retry: int) -> None:
        if self._progress is None:
            return
        try:
            self._progress(node_index, len(self._nodes), node_name, retry)
        except Exception:
            logger.exception("Query progress callback raised; continuing")
