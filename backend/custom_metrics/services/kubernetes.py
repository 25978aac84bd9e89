"""Thin async client for the Kubernetes API server."""

import logging
import ssl
from pathlib import Path
from typing import Any, Dict, Optional

import httpx

from ..config import Settings, settings

logger = logging.getLogger(__name__)


class KubernetesAPIError(Exception):
    """Raised when the API server rejects a request or cannot be reached."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class KubernetesClient:
    """JSON GETs against the API server with service-account credentials."""

    def __init__(
        self,
        settings_obj: Settings | None = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        use_settings = settings_obj or settings
        self._client = http_client or self._build_client(use_settings)

    @staticmethod
    def _build_client(use_settings: Settings) -> httpx.AsyncClient:
        headers: Dict[str, str] = {"Accept": "application/json"}
        token_path = Path(use_settings.kubernetes_token_path)
        if token_path.exists():
            headers["Authorization"] = f"Bearer {token_path.read_text(encoding='utf-8').strip()}"
        else:
            logger.warning("Service account token not found at %s; sending anonymous requests", token_path)

        verify: bool | ssl.SSLContext = use_settings.kubernetes_verify_tls
        ca_path = Path(use_settings.kubernetes_ca_path)
        if verify and ca_path.exists():
            verify = ssl.create_default_context(cafile=str(ca_path))

        return httpx.AsyncClient(
            base_url=use_settings.kubernetes_api_url,
            headers=headers,
            verify=verify,
            timeout=httpx.Timeout(30.0, connect=10.0),
        )

    async def get_json(self, path: str, params: Optional[Dict[str, str]] = None) -> Any:
        """GET ``path`` and decode the JSON body.

        Raises:
            KubernetesAPIError: transport failure, non-2xx status or invalid JSON
        """
        try:
            response = await self._client.get(path, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise KubernetesAPIError(
                f"GET {path} returned {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise KubernetesAPIError(f"GET {path} failed: {exc}") from exc

        try:
            return response.json()
        except ValueError as exc:
            raise KubernetesAPIError(f"GET {path} returned invalid JSON") from exc

    async def aclose(self) -> None:
        await self._client.aclose()
