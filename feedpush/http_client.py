import logging
import httpx
from typing import Any, Dict, Optional
from fake_useragent import UserAgent
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

logger = logging.getLogger(__name__)


class HTTPClient:
    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.ua = UserAgent()
        self.client = httpx.AsyncClient(http2=False, follow_redirects=True, transport=transport)

    def _get_headers(self):
        return {
            "User-Agent": self.ua.random,
            "Accept": "application/rss+xml,application/atom+xml,application/xml;q=0.9,text/xml;q=0.8,*/*;q=0.5",
            "Accept-Language": "zh-CN,zh;q=0.9,en-US;q=0.8,en;q=0.5",
            "Cache-Control": "max-age=0",
        }

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((httpx.RequestError, httpx.TimeoutException)),
        reraise=True,
    )
    async def fetch(self, url: str, timeout: float = 15.0) -> bytes:
        """
        Fetches a feed document with retries and header rotation.
        The raw body is returned so the feed parser can honour the
        document's own encoding declaration.
        Transport errors are retried; HTTP error statuses are raised immediately.
        """
        try:
            response = await self.client.get(url, headers=self._get_headers(), timeout=timeout)
            response.raise_for_status()
            logger.debug(f"Successfully fetched {url}")
            return response.content
        except Exception as e:
            logger.warning(f"Failed to fetch {url}: {e}")
            raise  # Let tenacity handle the retry

    async def post_json(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 10.0,
    ) -> Any:
        """POST a JSON body and return the decoded JSON response. Not retried."""
        request_headers = {"Content-Type": "application/json"}
        if headers:
            request_headers.update(headers)
        response = await self.client.post(url, json=payload, headers=request_headers, timeout=timeout)
        response.raise_for_status()
        return response.json()

    async def close(self):
        await self.client.aclose()
