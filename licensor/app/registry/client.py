import logging
from typing import Protocol

import httpx

from licensor.app.core.config import Settings
from licensor.app.core.errors import RegistryUnavailable
from licensor.app.registry.parser import RegistrySnapshot, parse_registry
from licensor.app.schemas.verdict import KeyStatus

logger = logging.getLogger("licensor.registry")


class RegistryReader(Protocol):
    """Anything able to resolve a key to its current status."""

    async def lookup(self, key: str) -> KeyStatus:
        ...


class GistRegistryClient:
    """
    Async reader for a key registry stored as a GitHub Gist file.

    HARD GUARANTEES:
    - Read-only (never writes back to the gist)
    - Re-fetches on every lookup (no caching)
    - Fail-closed: any fetch or parse failure resolves to NotFound
    """

    ACCEPT = "application/vnd.github+json"

    def __init__(
        self,
        *,
        settings: Settings,
        http_client: httpx.AsyncClient,
    ):
        self.settings = settings
        self.client = http_client
        self.base_url = str(settings.registry_api_url).rstrip("/")

    # ------------------------------------------------------------------
    # Auth helpers
    # ------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        token = self.settings.registry_token.get_secret_value()
        return {
            "Authorization": f"Bearer {token}",
            "Accept": self.ACCEPT,
        }

    def _gist_url(self) -> str:
        return f"{self.base_url}/gists/{self.settings.registry_id}"

    def _headers_for(self, url: str) -> dict[str, str]:
        # The token is only ever sent back to the configured API origin.
        target, origin = httpx.URL(url), httpx.URL(self.base_url)
        if (target.scheme, target.host, target.port) == (
            origin.scheme,
            origin.host,
            origin.port,
        ):
            return self._headers()
        return {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def lookup(self, key: str) -> KeyStatus:
        """
        Resolve a key against the current registry content.

        Registry failures never propagate: an unreachable registry must
        not be able to validate a key.
        """
        try:
            snapshot = await self.snapshot()
        except RegistryUnavailable as exc:
            logger.warning(
                "registry_unavailable_fail_closed",
                extra={"reason": str(exc)},
            )
            return KeyStatus.not_found()

        return snapshot.lookup(key)

    async def snapshot(self) -> RegistrySnapshot:
        content = await self.fetch_content()
        snapshot = parse_registry(content)
        logger.debug(
            "registry_parsed",
            extra={
                "entries": len(snapshot),
                "skipped_lines": snapshot.skipped_lines,
                "structured": snapshot.has_redemption_metadata,
            },
        )
        return snapshot

    async def fetch_content(self) -> str:
        """
        Fetch the raw registry text.

        Raises:
            RegistryUnavailable on transport errors, non-success responses,
            undecodable bodies or a missing registry file.
        """
        document = await self._get_json(self._gist_url())

        files = document.get("files") if isinstance(document, dict) else None
        if not isinstance(files, dict):
            raise RegistryUnavailable("gist response has no files mapping")

        filename = self.settings.registry_filename
        file_entry = files.get(filename)
        if not isinstance(file_entry, dict):
            raise RegistryUnavailable(f"{filename} missing from gist")

        # Large gist files are truncated in the API response
        if file_entry.get("truncated"):
            raw_url = file_entry.get("raw_url")
            if not isinstance(raw_url, str) or not raw_url:
                raise RegistryUnavailable(
                    f"{filename} is truncated and has no raw_url"
                )
            return await self._get_text(raw_url)

        content = file_entry.get("content")
        if not isinstance(content, str):
            raise RegistryUnavailable(f"{filename} has no text content")

        return content

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _get(self, url: str) -> httpx.Response:
        try:
            response = await self.client.get(
                url,
                headers=self._headers_for(url),
                timeout=self.settings.registry_timeout_seconds,
            )
        except httpx.HTTPError as exc:
            raise RegistryUnavailable(
                f"registry request failed: {type(exc).__name__}"
            ) from exc

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "registry_request_rejected",
                extra={
                    "status_code": response.status_code,
                    "registry_id": self.settings.registry_id,
                },
            )
            raise RegistryUnavailable(
                f"registry responded with status {response.status_code}"
            ) from exc

        return response

    async def _get_json(self, url: str):
        response = await self._get(url)
        try:
            return response.json()
        except ValueError as exc:
            raise RegistryUnavailable("registry returned invalid JSON") from exc

    async def _get_text(self, url: str) -> str:
        response = await self._get(url)
        try:
            return response.content.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise RegistryUnavailable("registry file is not UTF-8") from exc
