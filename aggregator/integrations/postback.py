"""
Outbound postback to the downstream tracker.

A forward is a single GET carrying the attribution key, the amount and (when
known) the offer id. The call is bounded by a total timeout and never retried
here; network errors and non-2xx answers come back as a failed
``PostbackResult`` rather than an exception.
"""
import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol
from urllib.parse import urlencode

import aiohttp

from aggregator.utils import get_logger

logger = get_logger(__name__)

# Tracker responses are short acknowledgements; cap what is kept for the ledger.
MAX_RESPONSE_TEXT = 2000


@dataclass(frozen=True)
class PostbackResult:
    success: bool
    url: str
    status_code: Optional[int] = None
    response_text: Optional[str] = None
    error: Optional[str] = None


class PostbackTransport(Protocol):
    async def send(self, attribution_key: str, amount: Decimal, offer_id: Optional[str] = None) -> PostbackResult: ...


def build_postback_url(base_url: str, attribution_key: str, amount: Decimal, offer_id: Optional[str] = None) -> str:
    params = {"clickid": attribution_key, "sum": str(amount)}
    if offer_id:
        params["offer_id"] = offer_id
    separator = "&" if "?" in base_url else "?"
    return f"{base_url}{separator}{urlencode(params)}"


class PostbackClient:
    """aiohttp implementation of ``PostbackTransport``."""

    def __init__(self, base_url: str, *, timeout_seconds: float = 10.0, user_agent: str = "conversion-aggregator/1.0"):
        self.base_url = base_url
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.user_agent = user_agent

    async def send(self, attribution_key: str, amount: Decimal, offer_id: Optional[str] = None) -> PostbackResult:
        url = build_postback_url(self.base_url, attribution_key, amount, offer_id)
        logger.info("Sending postback", clickid=attribution_key, offer_id=offer_id, amount=amount)
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.get(url, headers={"User-Agent": self.user_agent}) as response:
                    text = (await response.text())[:MAX_RESPONSE_TEXT]
                    if 200 <= response.status < 300:
                        logger.info("Postback accepted", clickid=attribution_key, status_code=response.status)
                        return PostbackResult(success=True, url=url, status_code=response.status, response_text=text)
                    logger.warning(
                        "Postback rejected by tracker",
                        clickid=attribution_key,
                        status_code=response.status,
                        response_text=text,
                    )
                    return PostbackResult(
                        success=False,
                        url=url,
                        status_code=response.status,
                        response_text=text,
                        error=f"HTTP error! status: {response.status}",
                    )
        except asyncio.TimeoutError:
            logger.error("Postback timed out", clickid=attribution_key, timeout_seconds=self.timeout.total)
            return PostbackResult(success=False, url=url, error=f"Postback timed out after {self.timeout.total}s")
        except aiohttp.ClientError as e:
            logger.error("Postback client error", clickid=attribution_key, error=str(e))
            return PostbackResult(success=False, url=url, error=f"Postback client error: {e}")
