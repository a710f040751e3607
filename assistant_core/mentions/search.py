"""@mention 候选搜索客户端。

GET {api_base_url}{mentions_path}?q=<query>，返回 JSON 数组：

    [{"id": "...", "name": "...", "type": "person", "aliases": ["..."]}, ...]

结果顺序由服务端决定（按相关度），这里不重新排序。
同一个 query 在 mention_search_cache_ttl 秒内直接复用上一次的结果。
"""

import time
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

import httpx

from assistant_core.config.settings import Settings, settings
from assistant_core.domain.exceptions import ApiError, NetworkError
from assistant_core.domain.mentions import MentionReference, normalize_mention_type
from assistant_core.infrastructure.logging.logger import logger

MAX_CACHE_ENTRIES = 256


class MentionSearcher(Protocol):
    """候选搜索协议，MentionAutocompleteController 只依赖它。"""

    async def search(self, query: str) -> List[MentionReference]:
        ...


def to_reference(item: Any) -> Optional[MentionReference]:
    """把单个 JSON 候选转换为 MentionReference，格式不对时返回 None。"""

    if not isinstance(item, dict):
        return None
    ref_id = item.get("id")
    name = item.get("name")
    type_ = normalize_mention_type(str(item.get("type") or ""))
    if not isinstance(ref_id, (str, int)) or not isinstance(name, str) or not name or type_ is None:
        return None
    aliases_raw = item.get("aliases") or []
    if not isinstance(aliases_raw, list):
        aliases_raw = []
    aliases = tuple(a for a in aliases_raw if isinstance(a, str) and a)
    return MentionReference(id=str(ref_id), name=name, type=type_, aliases=aliases)


class MentionSearchClient:
    def __init__(
        self,
        config: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
        max_cache_entries: int = MAX_CACHE_ENTRIES,
    ):
        self._config = config or settings
        self._client = client
        self._clock = clock
        self._max_cache_entries = max_cache_entries
        self._cache: Dict[str, Tuple[float, Tuple[MentionReference, ...]]] = {}

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self) -> None:
        self._cache.clear()

    async def search(self, query: str) -> List[MentionReference]:
        """按关键字搜索候选。

        空 query 直接返回空列表，不发请求。

        Raises:
            NetworkError: 连接失败或超时。
            ApiError: 非 2xx 响应或响应体不是 JSON 数组。
        """

        if not query:
            return []
        cached = self._cache.get(query)
        now = self._clock()
        if cached is not None and cached[0] > now:
            return list(cached[1])

        data = await self._fetch(query)
        if not isinstance(data, list):
            raise ApiError(code="BAD_RESPONSE", message="mention suggestions must be a JSON array")

        results: List[MentionReference] = []
        for item in data:
            ref = to_reference(item)
            if ref is None:
                logger.warning("Skipped malformed mention candidate", extra={"extra": {"item": repr(item)[:120]}})
                continue
            results.append(ref)

        ttl = self._config.mention_search_cache_ttl
        if ttl > 0:
            self._store(query, now + ttl, tuple(results), now)
        return results

    def _store(self, query: str, expires: float, results: Tuple[MentionReference, ...], now: float) -> None:
        """写入缓存：先清掉已过期的条目，超过容量时淘汰最早写入的条目。"""

        for key in [k for k, (exp, _) in self._cache.items() if exp <= now]:
            del self._cache[key]
        self._cache.pop(query, None)
        while self._cache and len(self._cache) >= self._max_cache_entries:
            del self._cache[next(iter(self._cache))]
        self._cache[query] = (expires, results)

    async def _fetch(self, query: str) -> Any:
        url = self._config.endpoint(self._config.mentions_path)
        try:
            if self._client is not None:
                resp = await self._client.get(url, params={"q": query})
            else:
                async with httpx.AsyncClient(timeout=self._config.http_timeout) as client:
                    resp = await client.get(url, params={"q": query})
        except httpx.RequestError as e:
            logger.error("Mention search failed", extra={"extra": {"query": query, "error": str(e)}})
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__)
        if resp.status_code >= 400:
            logger.error(
                "Mention search rejected",
                extra={"extra": {"query": query, "status": resp.status_code}},
            )
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)
        try:
            return resp.json()
        except ValueError:
            raise ApiError(code="BAD_RESPONSE", message="mention suggestions are not valid JSON")
