"""CacheManager -- 进程内响应缓存

TTL 过期 + LRU 淘汰（OrderedDict，最近使用的在末尾），条目带 tag，
可按 tag / provider 批量失效。同时实现 EmbeddingCache 协议。
"""

import hashlib
import json
import time
from collections import OrderedDict
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Self

import structlog

from llmgate.core.config import GatewayConfig

log = structlog.get_logger()

DEFAULT_COMPLETION_TTL = 3600
DEFAULT_EMBEDDING_TTL = 86400
DEFAULT_MAX_ENTRIES = 1000

BASE_TAGS = ("llmgate", "llmgate_response")

# 不影响响应内容的请求参数
_VOLATILE_PARAMS = frozenset({"stream", "user"})


@dataclass
class CacheEntry:
    data: Any
    expires_at: float
    tags: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_expired(self) -> bool:
        return time.monotonic() >= self.expires_at


def _model_tag(model: str) -> str:
    return "llmgate_model_" + model.replace(".", "_").replace("-", "_")


class CacheManager:
    """TTL + LRU 缓存"""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        self._max_entries = max(1, max_entries)
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @classmethod
    def from_config(cls, config: GatewayConfig) -> Self:
        return cls(max_entries=config.cache_max_entries)

    @staticmethod
    def generate_cache_key(provider: str, operation: str, params: dict[str, Any]) -> str:
        """确定性 key: "{provider}_{operation}_{sha256 前 32 位}"

        参数按 key 递归排序后序列化，stream / user 不参与。
        """
        relevant = {key: value for key, value in params.items() if key not in _VOLATILE_PARAMS}
        raw = json.dumps(relevant, sort_keys=True, ensure_ascii=False, default=str)
        digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]
        return f"{provider}_{operation}_{digest}"

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None
        if entry.is_expired:
            del self._entries[key]
            self._misses += 1
            self._evictions += 1
            return None
        self._entries.move_to_end(key)
        self._hits += 1
        return entry.data

    def set(
        self,
        key: str,
        data: Any,
        lifetime: int = DEFAULT_COMPLETION_TTL,
        tags: Iterable[str] = (),
    ) -> None:
        """写入条目；lifetime <= 0 时不缓存"""
        if lifetime <= 0:
            return
        self._entries[key] = CacheEntry(
            data=data,
            expires_at=time.monotonic() + lifetime,
            tags=frozenset(tags),
        )
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            evicted_key, _ = self._entries.popitem(last=False)
            self._evictions += 1
            log.debug("cache_evicted", key=evicted_key)

    def has(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not entry.is_expired

    def remove(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def flush(self) -> None:
        self._entries.clear()
        log.info("cache_flushed")

    def flush_by_tag(self, tag: str) -> int:
        """删除带 tag 的全部条目，返回删除数量"""
        keys = [key for key, entry in self._entries.items() if tag in entry.tags]
        for key in keys:
            del self._entries[key]
        log.debug("cache_flushed_by_tag", tag=tag, removed=len(keys))
        return len(keys)

    def flush_by_provider(self, provider: str) -> int:
        return self.flush_by_tag(f"llmgate_provider_{provider}")

    def cleanup_expired(self) -> int:
        expired = [key for key, entry in self._entries.items() if entry.is_expired]
        for key in expired:
            del self._entries[key]
        self._evictions += len(expired)
        return len(expired)

    def stats(self) -> dict[str, Any]:
        total = self._hits + self._misses
        return {
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / total if total else 0.0,
            "size": len(self._entries),
            "evictions": self._evictions,
        }

    @staticmethod
    def _response_tags(operation_tag: str, provider: str = "", model: str = "") -> list[str]:
        tags = [*BASE_TAGS, operation_tag]
        if provider:
            tags.append(f"llmgate_provider_{provider}")
        if model:
            tags.append(_model_tag(model))
        return tags

    # ---- completion ----

    def cache_completion(
        self,
        key: str,
        response: dict[str, Any],
        provider: str = "",
        lifetime: int = DEFAULT_COMPLETION_TTL,
    ) -> None:
        tags = self._response_tags("llmgate_completion", provider, str(response.get("model", "")))
        self.set(key, response, lifetime=lifetime, tags=tags)

    def get_cached_completion(self, key: str) -> dict[str, Any] | None:
        return self.get(key)

    # ---- embeddings（EmbeddingCache 协议）----

    def cache_embeddings(
        self,
        cache_key: str,
        embeddings: list[list[float]],
        model: str,
        usage: dict[str, int],
        ttl_seconds: int = DEFAULT_EMBEDDING_TTL,
        provider: str = "",
    ) -> None:
        tags = self._response_tags("llmgate_embeddings", provider, model)
        self.set(
            cache_key,
            {"embeddings": embeddings, "model": model, "usage": usage},
            lifetime=ttl_seconds,
            tags=tags,
        )

    def get_cached_embeddings(self, cache_key: str) -> dict[str, Any] | None:
        return self.get(cache_key)
