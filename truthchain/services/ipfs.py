"""IPFS storage through the Pinata pinning API."""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx

from truthchain.core.config import Settings

logger = logging.getLogger(__name__)

PUBLIC_GATEWAYS = [
    "https://gateway.pinata.cloud/ipfs",
    "https://ipfs.io/ipfs",
    "https://dweb.link/ipfs",
    "https://cloudflare-ipfs.com/ipfs",
]


class IPFSError(Exception):
    """Pinning or retrieval failed."""


@dataclass(frozen=True)
class IPFSUpload:
    cid: str
    gateway_url: str
    size: int
    timestamp: str | None = None


class PinataClient:
    """Stores JSON documents on IPFS and reads them back via a gateway."""

    def __init__(
        self,
        jwt: str | None = None,
        api_key: str | None = None,
        api_secret: str | None = None,
        api_url: str = "https://api.pinata.cloud",
        gateway: str = "https://gateway.pinata.cloud/ipfs",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not jwt and not (api_key and api_secret):
            raise ValueError("Pinata API credentials are required (api key/secret or JWT)")
        if jwt:
            auth_headers = {"Authorization": f"Bearer {jwt}"}
        else:
            auth_headers = {
                "pinata_api_key": str(api_key),
                "pinata_secret_api_key": str(api_secret),
            }
        self.api_url = api_url.rstrip("/")
        self.gateway = gateway.rstrip("/")
        self._auth_headers = auth_headers
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(
        cls, settings: Settings, client: httpx.AsyncClient | None = None
    ) -> "PinataClient":
        return cls(
            jwt=settings.PINATA_JWT,
            api_key=settings.PINATA_API_KEY,
            api_secret=settings.PINATA_API_SECRET,
            api_url=settings.PINATA_API_URL,
            gateway=settings.IPFS_GATEWAY,
            timeout=settings.IPFS_TIMEOUT,
            client=client,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    def gateway_url(self, cid: str) -> str:
        return f"{self.gateway}/{cid}"

    @staticmethod
    def gateway_urls(cid: str) -> list[str]:
        """The CID on several public gateways, for redundancy."""
        return [f"{gateway}/{cid}" for gateway in PUBLIC_GATEWAYS]

    async def store_content(
        self,
        content: dict[str, Any],
        metadata: dict[str, Any] | None = None,
        name: str = "content.json",
    ) -> IPFSUpload:
        """Pin a JSON document.

        Raises:
            IPFSError: If Pinata rejects the upload or cannot be reached
        """
        keyvalues = {
            "uploadedAt": datetime.now(timezone.utc).isoformat(),
            "service": "TruthChain",
        }
        for key, value in (metadata or {}).items():
            # Pinata keyvalues only accept scalars
            if value is not None:
                keyvalues[key] = value if isinstance(value, (str, int, float)) else str(value)

        body = {
            "pinataContent": content,
            "pinataMetadata": {"name": name, "keyvalues": keyvalues},
            "pinataOptions": {"cidVersion": 1},
        }
        try:
            response = await self.client.post(
                f"{self.api_url}/pinning/pinJSONToIPFS",
                json=body,
                headers=self._auth_headers,
            )
            response.raise_for_status()
            payload = response.json()
            cid = payload["IpfsHash"]
        except httpx.HTTPStatusError as e:
            raise IPFSError(
                f"Pinata API error: HTTP {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, KeyError, ValueError) as e:
            raise IPFSError(f"Pinata API error: {e}") from e

        logger.info(f"Content stored on IPFS via Pinata: {cid}")
        return IPFSUpload(
            cid=cid,
            gateway_url=self.gateway_url(cid),
            size=int(payload.get("PinSize") or len(json.dumps(content))),
            timestamp=payload.get("Timestamp"),
        )

    async def retrieve_content(self, cid: str) -> Any:
        """Fetch a pinned document through the gateway.

        Raises:
            IPFSError: If the gateway cannot serve the CID
        """
        try:
            response = await self.client.get(self.gateway_url(cid))
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise IPFSError(f"Failed to retrieve {cid} from IPFS: {e}") from e
        try:
            return response.json()
        except ValueError:
            return response.text

    async def test_authentication(self) -> bool:
        try:
            response = await self.client.get(
                f"{self.api_url}/data/testAuthentication", headers=self._auth_headers
            )
        except httpx.HTTPError as e:
            logger.error(f"Pinata authentication test failed: {e}")
            return False
        return response.status_code == 200
