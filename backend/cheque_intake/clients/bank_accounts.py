"""
Bank Account Directory Client

Read-only source for the "Pay To" dropdown:
- GET /api/v1/bank-accounts/dropdown
Results are cached so every step does not refetch the list.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from typing import Dict, List, Optional

import httpx

from cheque_intake.models import BankAccountOption

logger = logging.getLogger(__name__)

DROPDOWN_PATH = "/api/v1/bank-accounts/dropdown"


class BankAccountLookupError(Exception):
    """The bank account directory could not be read."""


@dataclass
class BankAccountCache:
    accounts: List[BankAccountOption]
    expires_at: datetime


class BankAccountDirectory:
    """
    Client for the bank account dropdown.

    Implements caching to minimize directory requests.
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        cache_minutes: int = 10,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.cache_minutes = cache_minutes
        self.timeout = timeout
        self._transport = transport
        self._cache: Optional[BankAccountCache] = None

    async def list_accounts(self) -> List[BankAccountOption]:
        """
        Active bank accounts for the dropdown.

        Raises:
            BankAccountLookupError: when the directory cannot be read
        """
        if self._is_cache_valid():
            logger.debug("Using cached bank accounts")
            return list(self._cache.accounts)

        accounts = await self._request_accounts()
        self._cache = BankAccountCache(
            accounts=accounts,
            expires_at=datetime.now(timezone.utc) + timedelta(minutes=self.cache_minutes),
        )
        logger.info(f"Loaded {len(accounts)} bank accounts for dropdown")
        return list(accounts)

    async def _request_accounts(self) -> List[BankAccountOption]:
        url = f"{self.base_url}{DROPDOWN_PATH}"
        headers: Dict[str, str] = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(url, headers=headers)
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Bank account directory returned {e.response.status_code}")
            raise BankAccountLookupError(f"Bank account directory returned HTTP {e.response.status_code}")
        except httpx.RequestError as e:
            logger.error(f"Bank account directory request error: {e}")
            raise BankAccountLookupError(f"Bank account directory request error: {e}")
        except ValueError:
            raise BankAccountLookupError("Bank account directory returned invalid JSON")

        items = body.get("data") if isinstance(body, dict) else body
        if not isinstance(items, list):
            raise BankAccountLookupError("Unexpected bank account directory response")

        return [BankAccountOption.from_dict(item) for item in items]

    def _is_cache_valid(self) -> bool:
        if not self._cache:
            return False
        return datetime.now(timezone.utc) < self._cache.expires_at

    def invalidate_cache(self):
        self._cache = None
        logger.info("Bank account cache invalidated")
