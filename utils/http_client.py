# SPDX-License-Identifier: Apache-2.0
#
# Copyright (c) 2024-2025 ChainVoice Contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
可重试的异步 HTTP 传输层

所有 JSON-RPC 请求都经过这里：连接错误、超时和可重试状态码按指数退避重试，
429 响应优先遵守 Retry-After。重试耗尽后原样抛出 httpx 异常，由调用方转换。
"""

import asyncio
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Iterable, Optional, Set

import httpx

logger = logging.getLogger(__name__)

# 传输层错误（非 HTTP 状态码）一律可重试
_TRANSPORT_ERRORS = (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError)


class AsyncRetryableHttpClient:
    """
    异步可重试的 HTTP 客户端

    包装 httpx.AsyncClient；测试可通过 ``transport=httpx.MockTransport(...)``
    注入假服务端，通过 ``sleep`` 跳过退避等待。
    """

    RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

    def __init__(
        self,
        max_retries: int = 3,
        timeout: float = 30.0,
        base_delay: float = 1.0,
        max_retry_after: Optional[float] = 60.0,
        retryable_status_codes: Optional[Iterable[int]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        **client_kwargs
    ):
        """
        Args:
            max_retries: 首次请求之外的最大重试次数
            timeout: 单次请求超时（秒）
            base_delay: 退避基数（秒），第 n 次重试等待 base_delay * 2**n
            max_retry_after: 可接受的最大 Retry-After 秒数，None 表示不限制
            retryable_status_codes: 可重试的状态码，默认 RETRYABLE_STATUS_CODES
            sleep: 退避等待使用的协程函数
            **client_kwargs: 传递给 httpx.AsyncClient 的其他参数（例如 transport）
        """
        self.max_retries = max(0, max_retries)
        self.base_delay = base_delay
        self.max_retry_after = max_retry_after
        self.retryable_status_codes: Set[int] = set(
            self.RETRYABLE_STATUS_CODES
            if retryable_status_codes is None
            else retryable_status_codes
        )
        self.retry_count = 0
        self._sleep = sleep

        client_kwargs.setdefault("timeout", timeout)
        self.client = httpx.AsyncClient(**client_kwargs)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        await self.client.aclose()

    def _backoff(self, attempt: int) -> float:
        return self.base_delay * (2 ** attempt)

    def _parse_retry_after(self, response: httpx.Response) -> Optional[float]:
        """Retry-After 可以是秒数，也可以是 HTTP 日期"""
        value = response.headers.get("Retry-After")
        if not value:
            return None

        try:
            return max(0.0, float(value))
        except ValueError:
            pass

        try:
            retry_at = parsedate_to_datetime(value)
        except (TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed Retry-After header {value!r}: {e}")
            return None
        return max(0.0, (retry_at - datetime.now(timezone.utc)).total_seconds())

    def _retry_delay(self, error: httpx.HTTPError, attempt: int) -> Optional[float]:
        """
        计算下一次重试前的等待时间

        Returns:
            等待秒数；返回 None 表示不应重试
        """
        if attempt >= self.max_retries:
            return None

        if isinstance(error, _TRANSPORT_ERRORS):
            return self._backoff(attempt)

        if not isinstance(error, httpx.HTTPStatusError):
            return None

        status = error.response.status_code
        if status not in self.retryable_status_codes:
            return None

        if status == 429:
            retry_after = self._parse_retry_after(error.response)
            if retry_after is not None:
                if self.max_retry_after is not None and retry_after > self.max_retry_after:
                    logger.error(
                        f"Retry-After of {retry_after}s exceeds the "
                        f"{self.max_retry_after}s limit, giving up"
                    )
                    return None
                return retry_after

        return self._backoff(attempt)

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        发送请求，失败时按策略重试

        Raises:
            httpx.HTTPError: 不可重试的错误，或重试次数用尽
        """
        attempt = 0
        while True:
            try:
                response = await self.client.request(method, url, **kwargs)
                response.raise_for_status()
            except httpx.HTTPError as e:
                delay = self._retry_delay(e, attempt)
                if delay is None:
                    logger.error(
                        f"{method} {url} failed after {attempt + 1} attempt(s): "
                        f"{type(e).__name__}: {e}"
                    )
                    raise

                attempt += 1
                self.retry_count += 1
                logger.warning(
                    f"{method} {url} failed ({type(e).__name__}), retry "
                    f"{attempt}/{self.max_retries} in {delay:.2f}s"
                )
                await self._sleep(delay)
                continue

            if attempt:
                logger.info(f"{method} {url} succeeded after {attempt} retries")
            return response

    async def get(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def post_json(self, url: str, payload: Any) -> Any:
        """
        POST 一个 JSON 文档并返回解码后的响应体

        Raises:
            httpx.HTTPError: 请求失败
            ValueError: 响应体不是合法 JSON
        """
        response = await self.post(url, json=payload)
        return response.json()
