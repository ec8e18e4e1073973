"""
Webhook Registry Sync
=====================
Keeps the Helius account-update webhook subscribed to every deposit address.

The webhook only makes payment notifications faster; deposits are still
found by polling. So every operation here is best-effort: failures are
logged and reported as ``False``, never raised.

Usage:
    from app.services.webhook_registry import webhook_registry

    ok = await webhook_registry.add_address(wallet_address)
"""

from typing import Any, Dict, Iterable, List, Optional, Tuple
from dataclasses import dataclass, field

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.logging_config import logger
from app.models.user import AppUser


@dataclass
class WebhookConfig:
    """Remote webhook configuration, fields named as Helius names them"""
    webhook_url: str = ""
    transaction_types: List[str] = field(default_factory=lambda: settings.helius_transaction_types)
    account_addresses: List[str] = field(default_factory=list)
    webhook_type: str = "accountUpdate"
    encoding: str = "jsonParsed"

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "WebhookConfig":
        return cls(
            webhook_url=data.get("webhookURL") or "",
            transaction_types=data.get("transactionTypes") or settings.helius_transaction_types,
            account_addresses=list(data.get("accountAddresses") or []),
            webhook_type=data.get("webhookType") or "accountUpdate",
            encoding=data.get("encoding") or "jsonParsed",
        )

    def to_api(self) -> Dict[str, Any]:
        return {
            "webhookURL": self.webhook_url,
            "transactionTypes": self.transaction_types,
            "accountAddresses": self.account_addresses,
            "webhookType": self.webhook_type,
            "encoding": self.encoding,
        }


class HeliusWebhookClient:
    """Thin httpx client for the Helius webhooks endpoint"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.HELIUS_API_KEY
        self.api_url = (api_url or settings.HELIUS_API_URL).rstrip('/')
        self.timeout = timeout or settings.HELIUS_REQUEST_TIMEOUT
        self._transport = transport

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    async def get_config(self, webhook_id: str) -> Optional[WebhookConfig]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.get(
                f"{self.api_url}/webhooks/{webhook_id}",
                headers=self._get_headers()
            )
        if response.status_code >= 400:
            logger.error(f"[WebhookRegistry] Helius get webhook error: {response.status_code} {response.text}")
            return None
        return WebhookConfig.from_api(response.json())

    async def set_config(self, webhook_id: str, config: WebhookConfig) -> bool:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.put(
                f"{self.api_url}/webhooks/{webhook_id}",
                json=config.to_api(),
                headers=self._get_headers()
            )
        if response.status_code >= 400:
            logger.error(f"[WebhookRegistry] Helius update webhook error: {response.status_code} {response.text}")
            return False
        return True


class WebhookRegistry:
    """
    Read-modify-write of the webhook's address set.

    Adding never drops addresses already registered; removing touches only
    the one address. Concurrent writers can still overwrite each other's
    change; a periodic ``sync_all_addresses`` repairs that.
    """

    def __init__(
        self,
        client: Optional[HeliusWebhookClient] = None,
        webhook_id: Optional[str] = None,
        webhook_url: Optional[str] = None,
    ):
        self.client = client or HeliusWebhookClient()
        self.webhook_id = webhook_id if webhook_id is not None else settings.HELIUS_WEBHOOK_ID
        self.webhook_url = webhook_url if webhook_url is not None else settings.HELIUS_WEBHOOK_URL

    def _missing_setting(self) -> Optional[str]:
        if not self.webhook_id:
            return "HELIUS_WEBHOOK_ID"
        if not self.client.api_key:
            return "HELIUS_API_KEY"
        if not self.webhook_url:
            return "HELIUS_WEBHOOK_URL"
        return None

    async def _update(self, transform, description: str) -> bool:
        missing = self._missing_setting()
        if missing:
            logger.warning(f"[WebhookRegistry] {missing} not configured - skipping webhook update")
            return False

        try:
            current = await self.client.get_config(self.webhook_id)
            if current is None:
                logger.error("[WebhookRegistry] Could not fetch current webhook config")
                return False

            updated = WebhookConfig(
                webhook_url=self.webhook_url,
                transaction_types=current.transaction_types,
                account_addresses=transform(current.account_addresses),
                webhook_type=current.webhook_type,
                encoding=current.encoding,
            )
            if not await self.client.set_config(self.webhook_id, updated):
                return False
        except Exception as e:
            logger.error(f"[WebhookRegistry] Failed to {description}: {e!r}")
            return False

        logger.info(f"[WebhookRegistry] Successfully {description} on webhook {self.webhook_id}")
        return True

    async def add_addresses(self, addresses: Iterable[str]) -> bool:
        new = [a for a in addresses if a]
        if not new:
            return True

        def merge(existing: List[str]) -> List[str]:
            # Union, keeping first-seen order
            return list(dict.fromkeys([*existing, *new]))

        return await self._update(merge, f"added {len(new)} address(es)")

    async def add_address(self, address: str) -> bool:
        return await self.add_addresses([address])

    async def remove_address(self, address: str) -> bool:
        return await self._update(
            lambda existing: [a for a in existing if a != address],
            f"removed address {address}",
        )

    async def sync_all_addresses(self, db: AsyncSession) -> Tuple[bool, int]:
        """Push every stored deposit address. Returns (success, address count)."""
        try:
            result = await db.execute(
                select(AppUser.deposit_wallet_address).where(
                    AppUser.deposit_wallet_address.is_not(None)
                )
            )
            addresses = [a for a in result.scalars().all() if a]
        except Exception as e:
            logger.error(f"[WebhookRegistry] Error fetching deposit addresses: {e!r}")
            return False, 0

        if not addresses:
            logger.info("[WebhookRegistry] No deposit addresses to sync")
            return True, 0

        if not self.webhook_id:
            logger.warning("[WebhookRegistry] HELIUS_WEBHOOK_ID not configured - skipping webhook sync")
            return False, 0

        return await self.add_addresses(addresses), len(addresses)


# Singleton instance
webhook_registry = WebhookRegistry()
