"""Explorer module for reading address history from a block explorer API.

This module provides:
- A rate limited fetcher shared by every explorer call of a session
- Typed transaction and token transfer records
- Client helpers for the `txlist` and `tokentx` account endpoints
"""

import asyncio
import time
import logging
from typing import Any, Dict, List, Optional

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

DEFAULT_RATE_LIMIT_MS = 1200

class ExplorerError(Exception):
    """Base exception for explorer errors."""
    pass

class MalformedResponse(ExplorerError):
    """Raised when the explorer answers with a non-list `result` (its error shape)."""
    def __init__(self, body: Any):
        self.body = body
        super().__init__(f"Malformed explorer response: {body}")

class RawTransaction(BaseModel):
    """A transaction as listed by the explorer `txlist` endpoint."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra='ignore')

    hash: str
    from_address: str = Field(alias='from')
    to: Optional[str] = None
    input: str = '0x'
    value: int = 0
    is_error: str = Field(default='0', alias='isError')
    receipt_status: str = Field(default='1', alias='txreceipt_status')
    time_stamp: Optional[int] = Field(default=None, alias='timeStamp')
    block_number: Optional[int] = Field(default=None, alias='blockNumber')

    @field_validator('to', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        # Contract creations come back with an empty recipient
        return v or None

    @property
    def succeeded(self) -> bool:
        return self.is_error == '0' and self.receipt_status == '1'

    def sent_to(self, address: str) -> bool:
        return bool(self.to) and self.to.lower() == address.lower()

class TokenTransfer(BaseModel):
    """One token leg as listed by the explorer `tokentx` endpoint."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra='ignore')

    hash: str
    to: Optional[str] = None
    contract_address: str = Field(alias='contractAddress')
    value: int = 0

    @field_validator('to', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        return v or None

class RateLimitedFetcher:
    """Serializes explorer requests so that no two start within `interval_ms`.

    All callers share one last-request timestamp guarded by an asyncio lock. A
    caller that arrives early sleeps for the remainder of the window and then
    re-checks the elapsed time before it is admitted.
    """

    def __init__(self, interval_ms: int = DEFAULT_RATE_LIMIT_MS, timeout: float = 30,
                 session: Optional[requests.Session] = None):
        self.interval = interval_ms / 1000
        self.timeout = timeout
        self.session = session or requests.Session()
        self._lock = asyncio.Lock()
        self._last_request: Optional[float] = None

    async def _wait_for_slot(self) -> None:
        async with self._lock:
            while True:
                now = time.monotonic()
                if self._last_request is None:
                    elapsed = self.interval
                else:
                    elapsed = now - self._last_request
                if elapsed >= self.interval:
                    self._last_request = now
                    return
                wait_time = self.interval - elapsed
                logger.debug(f"Explorer rate limited, waiting {wait_time * 1000:.0f}ms")
                await asyncio.sleep(wait_time)

    def _get(self, url: str, params: Optional[Dict[str, Any]]) -> Any:
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            raise ExplorerError(f"Explorer request failed: {str(e)}") from e
        except ValueError as e:
            raise ExplorerError(f"Explorer returned invalid JSON: {str(e)}") from e

    async def fetch(self, url: str, params: Optional[Dict[str, Any]] = None) -> List[Any]:
        """Fetch `url` once the rate limit allows and return its `result` list.

        Raises:
            MalformedResponse: The decoded body's `result` is not a list
            ExplorerError: Transport or decoding failure
        """
        await self._wait_for_slot()
        logger.debug(f"Explorer request: {url} action={(params or {}).get('action')}")
        data = await asyncio.to_thread(self._get, url, params)

        result = data.get('result') if isinstance(data, dict) else None
        if not isinstance(result, list):
            raise MalformedResponse(data)
        return result

class ExplorerClient:
    """Typed access to the account endpoints of an Etherscan-style explorer."""

    def __init__(self, fetcher: RateLimitedFetcher, base_url: str, api_key: str, chain_id: int = 1):
        self.fetcher = fetcher
        self.base_url = base_url
        self.api_key = api_key
        self.chain_id = chain_id

    def _params(self, action: str, address: str, sort: str) -> Dict[str, Any]:
        return {
            'chainid': self.chain_id,
            'module': 'account',
            'action': action,
            'address': address,
            'sort': sort,
            'apikey': self.api_key
        }

    async def list_transactions(self, address: str, sort: str = 'asc') -> List[RawTransaction]:
        """List normal transactions to or from `address`."""
        rows = await self.fetcher.fetch(self.base_url, self._params('txlist', address, sort))
        return _parse_rows(RawTransaction, rows)

    async def list_token_transfers(self, address: str, sort: str = 'desc') -> List[TokenTransfer]:
        """List ERC-20 transfer events involving `address`."""
        rows = await self.fetcher.fetch(self.base_url, self._params('tokentx', address, sort))
        return _parse_rows(TokenTransfer, rows)

def _parse_rows(model, rows: List[Any]) -> list:
    records = []
    for row in rows:
        try:
            records.append(model.model_validate(row))
        except ValidationError as e:
            logger.warning(f"Skipping unreadable {model.__name__} record {row!r:.120}: {e}")
    return records

__all__ = [
    'ExplorerError',
    'MalformedResponse',
    'RawTransaction',
    'TokenTransfer',
    'RateLimitedFetcher',
    'ExplorerClient',
    'DEFAULT_RATE_LIMIT_MS'
]
