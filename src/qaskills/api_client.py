"""HTTP client for the qaskills.sh registry API."""

import logging
from typing import Any
from urllib.parse import quote

import httpx

from qaskills import __version__
from qaskills.config import Config, get_config
from qaskills.errors import RegistryError

logger = logging.getLogger(__name__)

USER_AGENT = f"qaskills-cli/{__version__}"


class RegistryClient:
    """Thin synchronous client for the skill registry.

    All transport and HTTP status failures are raised as RegistryError.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        config: Config | None = None,
    ):
        """Initialize the registry client.

        Args:
            base_url: Registry base URL. If None, uses config default.
            timeout: Request timeout in seconds. If None, uses config default.
            config: Configuration to read defaults from.
        """
        config = config or get_config()
        self.base_url = (base_url or config.get_api_url()).rstrip("/")
        self.timeout = timeout if timeout is not None else config.qaskills_request_timeout
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )

    def __enter__(self) -> "RegistryClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = self._client.request(method, path, **kwargs)
            response.raise_for_status()
            return response
        except httpx.TimeoutException as e:
            raise RegistryError(f"Request to {self.base_url}{path} timed out") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 404:
                raise RegistryError(f"Not found in registry: {path}") from e
            raise RegistryError(f"Registry error HTTP {status} for {path}") from e
        except httpx.HTTPError as e:
            raise RegistryError(f"Registry request failed: {e}") from e

    def get_skill(self, slug: str) -> dict[str, Any]:
        """Get full details of a single skill by id or slug."""
        response = self._request("GET", f"/api/skills/{quote(slug, safe='')}")
        try:
            return response.json()
        except ValueError as e:
            raise RegistryError(f"Invalid JSON for skill '{slug}'") from e

    def get_skill_content(self, slug: str) -> str:
        """Get the rendered SKILL.md text for a skill."""
        response = self._request("GET", f"/api/skills/{quote(slug, safe='')}/content")
        return response.text

    def track_install(self, payload: dict[str, Any], timeout: float | None = None) -> None:
        """Submit an anonymous install/remove/update event."""
        kwargs: dict[str, Any] = {"json": payload}
        if timeout is not None:
            kwargs["timeout"] = timeout
        self._request("POST", "/api/telemetry/install", **kwargs)
        logger.debug(f"Telemetry sent: {payload.get('action')} {payload.get('skillId')}")
