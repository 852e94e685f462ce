"""ProviderHttpClient -- 厂商 HTTP 调用封装

JSON 请求 + 指数退避重试：
- 2xx: 解码 JSON
- 4xx: 立即抛出 ProviderResponseError，不重试
- 5xx / 网络错误: 重试，耗尽后抛出 ProviderConnectionError
"""

import asyncio
import json
import time
from collections.abc import AsyncIterator
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, SecretStr

from llmgate.core.exceptions import ProviderConnectionError, ProviderResponseError

log = structlog.get_logger()

DEFAULT_RETRY_BACKOFF_S = 0.1

# 连接类异常类型集合（触发重试）
_CONNECTION_ERROR_TYPES = (
    ConnectionError,
    OSError,
    TimeoutError,
    httpx.TransportError,
)


class ProviderSettings(BaseModel):
    """单个 adapter 实例的连接配置"""

    model_config = ConfigDict(frozen=True)

    api_key: SecretStr = Field(default=SecretStr(""))
    base_url: str = ""
    default_model: str | None = Field(default=None, description="为空时使用 adapter 内置默认模型")
    timeout_s: int = Field(default=30, ge=1)
    max_retries: int = Field(default=3, ge=1, description="最大尝试次数（含首次）")
    retry_backoff_s: float = Field(default=DEFAULT_RETRY_BACKOFF_S, ge=0)
    organization_id: str = ""
    options: dict[str, Any] = Field(default_factory=dict)

    @property
    def api_key_value(self) -> str:
        return self.api_key.get_secret_value()


def build_url(base_url: str, endpoint: str) -> str:
    """拼接 base URL 与相对 endpoint，两侧多余的 '/' 被折叠"""
    return base_url.rstrip("/") + "/" + endpoint.lstrip("/")


def extract_error_message(payload: Any) -> str:
    """从厂商错误响应中提取消息

    优先级: error.message -> error（字符串）-> message -> 兜底文案
    """
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        if isinstance(error, str) and error:
            return error
        if isinstance(payload.get("message"), str):
            return payload["message"]
    return "Unknown provider error"


class ProviderHttpClient:
    """厂商 HTTP 客户端

    http_client 可注入（测试时传入 mock）；未注入时首次请求懒创建，
    由 aclose() 关闭。
    """

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str] | None = None,
        timeout_s: int = 30,
        max_retries: int = 3,
        retry_backoff_s: float = DEFAULT_RETRY_BACKOFF_S,
        provider: str = "",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Args:
            base_url: 厂商 API 基础地址
            headers: 每个请求附带的默认 header（含鉴权）
            timeout_s: 单次请求超时（秒）
            max_retries: 最大尝试次数（含首次）
            retry_backoff_s: 指数退避基数，第 n 次重试前等待 base * 2**n 秒
            provider: provider 标识，用于日志与异常
            http_client: 外部注入的 httpx.AsyncClient
        """
        self._base_url = base_url
        self._headers = headers or {}
        self._timeout_s = timeout_s
        self._max_retries = max(1, max_retries)
        self._retry_backoff_s = retry_backoff_s
        self._provider = provider
        self._http_client = http_client
        self._owns_client = http_client is None

    @property
    def base_url(self) -> str:
        return self._base_url

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient()
        return self._http_client

    async def request(
        self,
        method: str,
        endpoint: str,
        json_body: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """发送请求并返回解码后的 JSON

        Raises:
            ProviderResponseError: 4xx 或响应体无法解码
            ProviderConnectionError: 5xx / 网络错误且重试耗尽
        """
        url = build_url(self._base_url, endpoint)
        request_headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            **self._headers,
            **(headers or {}),
        }
        last_error = ""
        last_exception: Exception | None = None

        for attempt in range(self._max_retries):
            if attempt > 0:
                await asyncio.sleep(self._retry_backoff_s * 2 ** (attempt - 1))

            start_time = time.monotonic()
            try:
                response = await self._client().request(
                    method,
                    url,
                    json=json_body,
                    headers=request_headers,
                    params=params,
                    timeout=self._timeout_s,
                )
            except _CONNECTION_ERROR_TYPES as e:
                last_error = str(e) or type(e).__name__
                last_exception = e
                log.warning(
                    "provider_request_retry",
                    provider=self._provider,
                    endpoint=endpoint,
                    attempt=attempt + 1,
                    error=last_error,
                    error_type=type(e).__name__,
                )
                continue

            duration_ms = int((time.monotonic() - start_time) * 1000)
            status = response.status_code

            if 200 <= status < 300:
                log.debug(
                    "provider_request_completed",
                    provider=self._provider,
                    endpoint=endpoint,
                    status_code=status,
                    duration_ms=duration_ms,
                )
                return self._decode(response)

            if 400 <= status < 500:
                message = extract_error_message(self._safe_json(response))
                log.error(
                    "provider_request_rejected",
                    provider=self._provider,
                    endpoint=endpoint,
                    status_code=status,
                    error=message,
                )
                raise ProviderResponseError(message, status_code=status, provider=self._provider)

            last_error = f"HTTP {status}: {extract_error_message(self._safe_json(response))}"
            last_exception = None
            log.warning(
                "provider_request_retry",
                provider=self._provider,
                endpoint=endpoint,
                attempt=attempt + 1,
                status_code=status,
            )

        log.error(
            "provider_request_failed",
            provider=self._provider,
            endpoint=endpoint,
            attempts=self._max_retries,
            error=last_error,
        )
        raise ProviderConnectionError(
            f"Failed to connect to provider after {self._max_retries} attempts: {last_error}",
            provider=self._provider,
            original_error=last_exception,
        )

    async def get(self, endpoint: str, **kwargs: Any) -> dict[str, Any]:
        return await self.request("GET", endpoint, **kwargs)

    async def post(self, endpoint: str, json_body: dict[str, Any], **kwargs: Any) -> dict[str, Any]:
        return await self.request("POST", endpoint, json_body=json_body, **kwargs)

    async def stream_lines(
        self,
        endpoint: str,
        json_body: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> AsyncIterator[str]:
        """流式 POST，逐行产出非空响应行（SSE / NDJSON），不重试

        Raises:
            ProviderResponseError: 4xx
            ProviderConnectionError: 5xx 或网络错误
        """
        url = build_url(self._base_url, endpoint)
        request_headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
            **self._headers,
            **(headers or {}),
        }
        try:
            async with self._client().stream(
                "POST",
                url,
                json=json_body,
                headers=request_headers,
                timeout=self._timeout_s,
            ) as response:
                status = response.status_code
                if status >= 400:
                    await response.aread()
                    message = extract_error_message(self._safe_json(response))
                    log.error(
                        "provider_stream_rejected",
                        provider=self._provider,
                        endpoint=endpoint,
                        status_code=status,
                        error=message,
                    )
                    if status < 500:
                        raise ProviderResponseError(message, status_code=status, provider=self._provider)
                    raise ProviderConnectionError(f"HTTP {status}: {message}", provider=self._provider)

                async for line in response.aiter_lines():
                    if line.strip():
                        yield line
        except _CONNECTION_ERROR_TYPES as e:
            log.error(
                "provider_stream_failed",
                provider=self._provider,
                endpoint=endpoint,
                error_type=type(e).__name__,
            )
            raise ProviderConnectionError(
                f"Streaming request to provider failed: {e}",
                provider=self._provider,
                original_error=e,
            ) from e

    async def fetch_bytes(self, url: str) -> bytes:
        """下载任意绝对 URL 的原始内容（不附带厂商鉴权 header，不重试）

        Raises:
            ProviderResponseError: 非 2xx 响应
            ProviderConnectionError: 网络错误
        """
        try:
            response = await self._client().request("GET", url, timeout=self._timeout_s)
        except _CONNECTION_ERROR_TYPES as e:
            log.warning("provider_fetch_failed", provider=self._provider, url=url, error_type=type(e).__name__)
            raise ProviderConnectionError(
                f"Failed to fetch {url}: {e}",
                provider=self._provider,
                original_error=e,
            ) from e
        if not 200 <= response.status_code < 300:
            raise ProviderResponseError(
                f"Failed to fetch {url}: HTTP {response.status_code}",
                status_code=response.status_code,
                provider=self._provider,
            )
        return response.content

    def _decode(self, response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ProviderResponseError(
                f"Invalid JSON response from provider: {e}",
                status_code=response.status_code,
                provider=self._provider,
            ) from e
        if not isinstance(data, dict):
            raise ProviderResponseError(
                "Invalid JSON response from provider: expected an object",
                status_code=response.status_code,
                provider=self._provider,
            )
        return data

    @staticmethod
    def _safe_json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None

    async def aclose(self) -> None:
        """关闭自行创建的 httpx 客户端；注入的客户端由调用方负责"""
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
