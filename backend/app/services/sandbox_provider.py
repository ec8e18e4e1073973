"""
Sandbox Provider Client
=======================
Interface to the remote sandbox service plus the Daytona implementation.

The rest of the package only talks to ``SandboxProvider`` / ``SandboxHandle``;
tests substitute an in-memory provider.

Usage:
    from app.services.sandbox_provider import get_sandbox_provider

    provider = get_sandbox_provider()
    handles = await provider.list()
"""

from typing import Any, Dict, List, Optional, Protocol
from dataclasses import dataclass, field

import httpx

from app.core.config import settings
from app.core.exceptions import SandboxProviderError
from app.core.logging_config import logger
from app.services.identifiers import normalize_id


@dataclass
class CreateSandboxParams:
    """Options for a new sandbox"""
    image: str = "node:20"
    public: bool = True
    labels: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_settings(cls) -> "CreateSandboxParams":
        return cls(image=settings.SANDBOX_IMAGE, public=settings.SANDBOX_PUBLIC)


class SandboxHandle(Protocol):
    id: str

    async def start(self) -> None:
        ...

    async def get_root_dir(self) -> str:
        ...


class SandboxProvider(Protocol):
    async def list(self) -> List[SandboxHandle]:
        ...

    async def create(self, params: CreateSandboxParams) -> SandboxHandle:
        ...


# ==========================================
# Daytona
# ==========================================

class DaytonaSandbox:
    """Handle to one Daytona sandbox"""

    def __init__(self, provider: "DaytonaProvider", sandbox_id: str, state: Optional[str] = None):
        self._provider = provider
        self.id = normalize_id(sandbox_id)
        self.state = state

    async def start(self) -> None:
        await self._provider._request(
            "POST",
            f"/sandbox/{self.id}/start",
            timeout=settings.SANDBOX_START_TIMEOUT
        )
        logger.log_sandbox_event(self.id, "start requested")

    async def get_root_dir(self) -> str:
        data = await self._provider._request(
            "GET",
            f"/toolbox/{self.id}/toolbox/project-dir",
            timeout=settings.SANDBOX_PROBE_TIMEOUT
        )
        root_dir = (data or {}).get("dir")
        if not root_dir:
            raise SandboxProviderError(f"Sandbox {self.id} returned no root directory")
        return root_dir

    def __repr__(self):
        return f"<DaytonaSandbox {self.id} state={self.state}>"


class DaytonaProvider:
    """
    Daytona control-plane client over httpx.

    HTTP failures are raised as SandboxProviderError carrying the status code
    and the provider's own message, so the error classifier can tell gateway
    outages from real rejections. Connection errors and timeouts propagate as
    httpx exceptions, which the classifier treats as transient.
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        target: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = (api_url or settings.DAYTONA_API_URL).rstrip('/')
        self.api_key = api_key if api_key is not None else settings.DAYTONA_API_KEY
        self.target = target or settings.DAYTONA_TARGET
        self._transport = transport

    def _get_headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        timeout: float = 30.0,
    ) -> Any:
        async with httpx.AsyncClient(
            base_url=self.api_url,
            timeout=timeout,
            transport=self._transport,
        ) as client:
            response = await client.request(method, path, json=json, headers=self._get_headers())

        if response.status_code >= 400:
            raise SandboxProviderError(
                self._error_message(response),
                status_code=response.status_code
            )

        if not response.content:
            return None
        return response.json()

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("message"):
            message = body["message"]
        else:
            message = response.text or response.reason_phrase
        return f"{message} (HTTP {response.status_code})"

    async def list(self) -> List[DaytonaSandbox]:
        data = await self._request("GET", "/sandbox", timeout=settings.SANDBOX_LIST_TIMEOUT)
        items = data if isinstance(data, list) else (data or {}).get("items", [])
        return [
            DaytonaSandbox(self, item["id"], item.get("state"))
            for item in items
            if item.get("id")
        ]

    async def create(self, params: CreateSandboxParams) -> DaytonaSandbox:
        payload = {
            "image": params.image,
            "public": params.public,
            "target": self.target,
            "labels": params.labels,
        }
        data = await self._request(
            "POST", "/sandbox", json=payload, timeout=settings.SANDBOX_CREATE_TIMEOUT
        )
        sandbox_id = (data or {}).get("id")
        if not sandbox_id:
            raise SandboxProviderError("Daytona returned no sandbox id")
        sandbox = DaytonaSandbox(self, sandbox_id, data.get("state"))
        logger.log_sandbox_event(sandbox.id, "created", image=params.image)
        return sandbox


_provider: Optional[DaytonaProvider] = None


def get_sandbox_provider() -> DaytonaProvider:
    """Get or create the process-wide Daytona client"""
    global _provider
    if _provider is None:
        _provider = DaytonaProvider()
    return _provider
