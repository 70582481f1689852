"""HubSpot CRM client for pushing captured leads as contacts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import aiohttp

from src.errors import IntegrationError
from src.logging_config import get_logger

logger: Any = get_logger(__name__)

HUBSPOT_API_BASE = "https://api.hubapi.com"


@dataclass(slots=True)
class HubSpotClient:
    """Create contacts through the HubSpot CRM v3 API."""

    api_key: str
    timeout_seconds: int = 10
    base_url: str = HUBSPOT_API_BASE

    _session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> HubSpotClient:
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        self._session = aiohttp.ClientSession(timeout=timeout)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def create_contact(self, properties: dict[str, Any]) -> str:
        """Create a contact and return its HubSpot id.

        Empty property values are dropped; HubSpot rejects nulls.

        Raises:
            IntegrationError: On transport failure, a non-2xx response or a
                body without a contact id
        """
        if not self._session:
            raise IntegrationError("hubspot", "Client session not initialized")

        payload = {
            "properties": {k: v for k, v in properties.items() if v not in (None, "")}
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            async with self._session.post(
                f"{self.base_url}/crm/v3/objects/contacts",
                json=payload,
                headers=headers,
            ) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    raise IntegrationError("hubspot", f"API error: {resp.status} {body}")
                data = await resp.json()
        except (aiohttp.ClientError, TimeoutError) as e:
            raise IntegrationError("hubspot", f"Request failed: {e}") from e
        except ValueError as e:
            raise IntegrationError("hubspot", f"Unreadable response: {e}") from e

        if not isinstance(data, dict):
            raise IntegrationError("hubspot", "Unexpected response body")
        contact_id = data.get("id")
        if not contact_id:
            raise IntegrationError("hubspot", "Response carried no contact id")
        return str(contact_id)
