"""EmbeddingService -- 文本向量化 + 向量运算

单条文本按 (provider, input, 影响结果的选项) 缓存；批量请求先查缓存，
未命中的文本去重后合并为一次 adapter 调用。
"""

from collections.abc import Sequence
from typing import Self

import structlog

from llmgate.core import vector_math
from llmgate.core.config import GatewayConfig
from llmgate.core.exceptions import InvalidArgumentError, ProviderResponseError
from llmgate.core.models import EmbeddingOptions, EmbeddingResponse, SimilarityMatch, UsageStatistics
from llmgate.core.models.options import DEFAULT_EMBEDDING_CACHE_TTL
from llmgate.core.protocols import EmbeddingCache

from .cache import CacheManager
from .manager import LlmServiceManager

log = structlog.get_logger()


class EmbeddingService:
    def __init__(
        self,
        manager: LlmServiceManager,
        cache: EmbeddingCache | None = None,
        default_ttl: int = DEFAULT_EMBEDDING_CACHE_TTL,
    ) -> None:
        """
        Args:
            manager: 服务入口
            cache: embedding 缓存（None 时不缓存）
            default_ttl: options.cache_ttl 为空时使用的缓存有效期（秒）
        """
        self._manager = manager
        self._cache = cache
        self._default_ttl = default_ttl

    @classmethod
    def from_config(
        cls,
        manager: LlmServiceManager,
        cache: EmbeddingCache | None,
        config: GatewayConfig,
    ) -> Self:
        return cls(manager, cache, default_ttl=config.embedding_cache_ttl_s)

    @staticmethod
    def _check_text(text: str) -> None:
        if not text:
            raise InvalidArgumentError("Text cannot be empty", field="text")

    @staticmethod
    def _cache_key(text: str, options: EmbeddingOptions) -> str:
        return CacheManager.generate_cache_key(
            options.provider or "default",
            "embeddings",
            {"input": text, "options": options.cache_fingerprint()},
        )

    def _ttl(self, options: EmbeddingOptions) -> int:
        return options.cache_ttl if options.cache_ttl is not None else self._default_ttl

    def _lookup(self, text: str, options: EmbeddingOptions) -> EmbeddingResponse | None:
        if self._cache is None or self._ttl(options) <= 0:
            return None
        cached = self._cache.get_cached_embeddings(self._cache_key(text, options))
        if cached is None:
            return None
        usage = cached.get("usage") or {}
        return EmbeddingResponse(
            embeddings=cached["embeddings"],
            model=cached.get("model", ""),
            usage=UsageStatistics(
                prompt_tokens=usage.get("prompt_tokens", 0),
                total_tokens=usage.get("total_tokens", 0),
            ),
            provider=options.provider or "",
        )

    def _store(
        self,
        text: str,
        options: EmbeddingOptions,
        embeddings: list[list[float]],
        model: str,
        provider: str,
        usage: UsageStatistics | None = None,
    ) -> None:
        if self._cache is None or self._ttl(options) <= 0:
            return
        usage_data = (
            {"prompt_tokens": usage.prompt_tokens, "total_tokens": usage.total_tokens}
            if usage is not None
            else {}
        )
        self._cache.cache_embeddings(
            self._cache_key(text, options),
            embeddings,
            model,
            usage_data,
            self._ttl(options),
            provider=provider,
        )

    async def embed(self, text: str, options: EmbeddingOptions | None = None) -> list[float]:
        response = await self.embed_full(text, options)
        return response.vector

    async def embed_full(self, text: str, options: EmbeddingOptions | None = None) -> EmbeddingResponse:
        """单条文本向量化（先查缓存）

        Raises:
            InvalidArgumentError: 文本为空（在访问缓存与网络之前）
        """
        self._check_text(text)
        options = options or EmbeddingOptions()

        if (cached := self._lookup(text, options)) is not None:
            log.debug("embedding_cache_hit", provider=options.provider or "default")
            return cached

        response = await self._manager.embed([text], options)
        self._store(text, options, response.embeddings, response.model, response.provider, response.usage)
        return response

    async def embed_batch(
        self,
        texts: list[str],
        options: EmbeddingOptions | None = None,
    ) -> list[list[float]]:
        """批量向量化，输出顺序与输入一致

        已缓存的文本直接返回；其余文本去重后一次性请求。
        """
        if not texts:
            return []
        for text in texts:
            self._check_text(text)
        options = options or EmbeddingOptions()

        vectors: dict[str, list[float]] = {}
        for text in texts:
            if text not in vectors and (cached := self._lookup(text, options)) is not None:
                vectors[text] = cached.vector

        misses = [text for text in dict.fromkeys(texts) if text not in vectors]
        if misses:
            response = await self._manager.embed(misses, options)
            if response.count != len(misses):
                raise ProviderResponseError(
                    f"Provider returned {response.count} embeddings for {len(misses)} inputs",
                    provider=response.provider,
                )
            single_usage = response.usage if len(misses) == 1 else None
            for text, vector in zip(misses, response.embeddings, strict=True):
                vectors[text] = vector
                self._store(text, options, [vector], response.model, response.provider, single_usage)

        log.debug(
            "embedding_batch_completed",
            total=len(texts),
            fetched=len(misses),
        )
        return [vectors[text] for text in texts]

    # ---- 向量运算 ----

    @staticmethod
    def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
        return vector_math.cosine_similarity(a, b)

    @staticmethod
    def normalize(vector: Sequence[float]) -> list[float]:
        return vector_math.normalize(vector)

    @staticmethod
    def pairwise_similarities(vectors: Sequence[Sequence[float]]) -> list[list[float]]:
        return vector_math.pairwise_similarities(vectors)

    @staticmethod
    def find_most_similar(
        query: Sequence[float],
        candidates: Sequence[Sequence[float]],
        top_k: int = 5,
    ) -> list[SimilarityMatch]:
        return vector_math.find_most_similar(query, candidates, top_k)
