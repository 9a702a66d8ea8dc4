"""Billing/entitlement check performed once when a batch is started."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntitlementResult:
    allowed: bool
    reason: str | None = None


class EntitlementChecker(ABC):
    @abstractmethod
    async def check(self, owner_id: str) -> EntitlementResult:
        ...


class AllowAllEntitlements(EntitlementChecker):
    """Used when no billing service is configured."""

    async def check(self, owner_id: str) -> EntitlementResult:
        return EntitlementResult(allowed=True)


class HttpEntitlementChecker(EntitlementChecker):
    """Asks the billing service ``GET {base}/entitlements/{owner_id}``.

    Expects ``{"allowed": bool, "reason": str | null}``. Any failure to get
    an answer denies.
    """

    def __init__(self, base_url: str, timeout_seconds: float = 5.0, client: httpx.AsyncClient | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def check(self, owner_id: str) -> EntitlementResult:
        url = f"{self.base_url}/entitlements/{owner_id}"
        try:
            if self._client is not None:
                resp = await self._client.get(url, timeout=self.timeout_seconds)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    resp = await client.get(url)
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Entitlement check failed for %s: %s", owner_id, exc)
            return EntitlementResult(allowed=False, reason="Unable to verify entitlement, try again later.")

        allowed = bool(body.get("allowed"))
        return EntitlementResult(allowed=allowed, reason=None if allowed else body.get("reason") or "Not entitled")
