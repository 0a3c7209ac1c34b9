# SPDX-License-Identifier: Apache-2.0
#
# Copyright (c) 2024-2025 Dashsync Contributors
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
Retrying HTTP client.

Wraps ``httpx.Client`` with exponential back-off, 429 ``Retry-After``
handling and cancellation-aware waits.
"""

import logging
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Iterable, Optional, Set

import httpx


logger = logging.getLogger("dashsync.utils.http_client")


class RetryableHttpClient:
    """
    HTTP client with automatic retries.

    - exponential back-off between attempts
    - honours ``Retry-After`` on 429 responses, up to ``max_retry_after``
    - retries timeouts and network errors
    - every wait can be interrupted through a cancellation token exposing
      ``wait(seconds) -> bool`` and ``raise_if_cancelled()``
    """

    RETRYABLE_STATUS_CODES = {
        408,  # Request Timeout
        429,  # Too Many Requests
        500,  # Internal Server Error
        502,  # Bad Gateway
        503,  # Service Unavailable
        504,  # Gateway Timeout
    }

    def __init__(
        self,
        max_retries: int = 3,
        timeout: float = 30.0,
        base_delay: float = 1.0,
        max_retry_after: Optional[float] = 60.0,
        retryable_status_codes: Optional[Iterable[int]] = None,
        **client_kwargs
    ):
        """
        Args:
            max_retries: Maximum retry attempts after the first request
            timeout: Default request timeout in seconds
            base_delay: Base back-off delay in seconds
            max_retry_after: Longest ``Retry-After`` (seconds) worth waiting for;
                             None means no limit
            retryable_status_codes: Overrides ``RETRYABLE_STATUS_CODES``
            **client_kwargs: Passed through to ``httpx.Client``
        """
        self.max_retries = max_retries
        self.timeout = timeout
        self.base_delay = base_delay
        self.max_retry_after = max_retry_after
        self.retryable_status_codes: Set[int] = (
            set(retryable_status_codes)
            if retryable_status_codes is not None
            else set(self.RETRYABLE_STATUS_CODES)
        )

        if "timeout" not in client_kwargs:
            client_kwargs["timeout"] = timeout

        self.client = httpx.Client(**client_kwargs)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self):
        self.client.close()

    def _calculate_delay(self, attempt: int) -> float:
        # 1s, 2s, 4s, 8s, ...
        return self.base_delay * (2 ** attempt)

    def _get_retry_after(self, response: httpx.Response) -> Optional[float]:
        """Read ``Retry-After`` as seconds or an HTTP date."""
        retry_after = response.headers.get("Retry-After")

        if retry_after:
            try:
                return float(retry_after)
            except ValueError:
                try:
                    retry_date = parsedate_to_datetime(retry_after)
                    delta = (retry_date - datetime.now(timezone.utc)).total_seconds()
                    return max(0.0, delta)
                except (TypeError, ValueError) as e:
                    logger.warning(
                        f"Failed to parse Retry-After header: {retry_after}, error: {e}"
                    )

        return None

    def _sleep(self, delay: float, cancel_token=None) -> None:
        if cancel_token is None:
            time.sleep(delay)
            return
        if cancel_token.wait(delay):
            cancel_token.raise_if_cancelled()

    def request(self, method: str, url: str, cancel_token=None, **kwargs) -> httpx.Response:
        """
        Send an HTTP request, retrying transient failures.

        Args:
            method: HTTP method
            url: Request URL
            cancel_token: Optional cancellation token checked before every
                          attempt and during back-off
            **kwargs: Passed through to ``httpx.Client.request``

        Returns:
            Successful response

        Raises:
            httpx.HTTPStatusError: Non-retryable status or retries exhausted
            httpx.TransportError: Network failure after retries were exhausted
        """
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            try:
                response = self.client.request(method, url, **kwargs)
                response.raise_for_status()

                if attempt > 0:
                    logger.info(f"Request succeeded after {attempt} retries: {method} {url}")

                return response

            except httpx.HTTPStatusError as e:
                last_error = e
                response = e.response

                if response.status_code not in self.retryable_status_codes:
                    logger.debug(
                        f"Non-retryable HTTP error: {response.status_code} {method} {url}"
                    )
                    raise

                if attempt >= self.max_retries:
                    logger.error(f"Max retries exceeded: {method} {url}")
                    raise

                if response.status_code == 429:
                    retry_after = self._get_retry_after(response)
                    if retry_after is not None:
                        if self.max_retry_after is not None and retry_after > self.max_retry_after:
                            logger.error(
                                "Rate limit retry time too long (%ss > %ss), not retrying",
                                retry_after,
                                self.max_retry_after,
                            )
                            raise
                        delay = retry_after
                        logger.warning(
                            f"Rate limited (429), waiting {delay}s "
                            f"before retry {attempt + 1}/{self.max_retries}"
                        )
                    else:
                        delay = self._calculate_delay(attempt)
                        logger.warning(
                            f"Rate limited (429), backing off {delay}s "
                            f"before retry {attempt + 1}/{self.max_retries}"
                        )
                else:
                    delay = self._calculate_delay(attempt)
                    logger.warning(
                        f"HTTP error {response.status_code}, retrying in {delay}s "
                        f"(attempt {attempt + 1}/{self.max_retries})"
                    )

                self._sleep(delay, cancel_token)

            except (httpx.TimeoutException, httpx.NetworkError) as e:
                last_error = e

                if attempt >= self.max_retries:
                    logger.error(f"Max retries exceeded for network error: {method} {url}")
                    raise

                delay = self._calculate_delay(attempt)
                logger.warning(
                    f"Network error: {type(e).__name__}, retrying in {delay}s "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )

                self._sleep(delay, cancel_token)

        if last_error:
            raise last_error
        raise RuntimeError("Unexpected error in retry loop")

    def get(self, url: str, **kwargs) -> httpx.Response:
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs) -> httpx.Response:
        return self.request("POST", url, **kwargs)
