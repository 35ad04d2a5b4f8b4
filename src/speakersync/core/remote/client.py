"""
Remote Store Client.

The remote copy of the dataset is one file inside a GitHub gist. Both
operations are whole-document: :meth:`GistClient.fetch` reads and parses
the file, :meth:`GistClient.replace` overwrites it. The client never
retries; retry policy belongs to the sync engine.

Example:
    >>> client = GistClient(config_manager)
    >>> dataset = await client.fetch()
    >>> await client.replace(dataset)
"""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

import httpx

from speakersync.core.config import ConfigManager, SyncConfig
from speakersync.core.exceptions import RemoteStoreError
from speakersync.core.records.models import Dataset
from speakersync.core.timeutil import format_timestamp, utcnow

logger = logging.getLogger(__name__)

ACCEPT_HEADER = "application/vnd.github+json"
DOCUMENT_DESCRIPTION = "Rotary Speakers Database"


class RemoteStore(Protocol):
    """Contract the sync engine and backup manager depend on."""

    async def fetch(self) -> Dataset: ...

    async def replace(self, dataset: Dataset) -> None: ...


def _auth_headers(token: str) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {token}",
        "Accept": ACCEPT_HEADER,
    }


class GistClient:
    """
    HTTP client for the gist holding the dataset.

    The configuration is read on every call so credential or document
    changes take effect without rebuilding the client.
    """

    def __init__(
        self,
        config: ConfigManager,
        *,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            config: Configuration manager supplying credential and document id
            http: Optional pre-built ``httpx.AsyncClient`` (tests pass one
                with a ``MockTransport``). Owned and closed by this client
                when omitted.
        """
        self.config_manager = config
        self._http = http
        self._owns_http = http is None

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.config_manager.config.request_timeout)
        return self._http

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    def _document_url(self, config: SyncConfig) -> str:
        return f"{config.api_base.rstrip('/')}/gists/{config.document_id}"

    async def _request(
        self, method: str, url: str, *, token: str, json_body: Any = None
    ) -> httpx.Response:
        try:
            response = await self.http.request(
                method, url, headers=_auth_headers(token), json=json_body
            )
        except httpx.HTTPError as e:
            raise RemoteStoreError(f"Remote request failed: {e}") from e

        if response.is_error:
            raise RemoteStoreError(
                f"Remote API error: {response.status_code}",
                status_code=response.status_code,
            )
        return response

    async def _get_document(self, config: SyncConfig) -> dict[str, Any]:
        response = await self._request("GET", self._document_url(config), token=config.token)
        try:
            document = response.json()
        except ValueError as e:
            raise RemoteStoreError(
                f"Remote API returned invalid JSON: {e}", status_code=response.status_code
            ) from e
        if not isinstance(document, dict):
            raise RemoteStoreError(
                "Remote API returned an unexpected document shape",
                status_code=response.status_code,
            )
        return document

    async def _file_content(self, config: SyncConfig, file_entry: dict[str, Any]) -> str | None:
        # GitHub truncates large gist files; the full content lives at raw_url
        if file_entry.get("truncated") and file_entry.get("raw_url"):
            response = await self._request("GET", file_entry["raw_url"], token=config.token)
            return response.text
        return file_entry.get("content")

    async def fetch(self) -> Dataset:
        """
        Fetch and parse the remote dataset.

        Raises:
            RemoteStoreError: On network/HTTP failure or if the data file is missing.
            DatasetParseError: If the data file content is not a valid dataset.
        """
        config = self.config_manager.config
        document = await self._get_document(config)

        file_entry = (document.get("files") or {}).get(config.data_file_name)
        content = await self._file_content(config, file_entry) if file_entry else None
        if not content:
            raise RemoteStoreError(
                f"Data file {config.data_file_name} not found in remote document",
                status_code=404,
            )

        dataset = Dataset.from_document(content)
        logger.debug(
            "Fetched remote dataset v%d (%d records)", dataset.version, len(dataset.speakers)
        )
        return dataset

    async def replace(self, dataset: Dataset) -> None:
        """
        Replace the remote data file with ``dataset``.

        Raises:
            RemoteStoreError: On network/HTTP failure.
        """
        config = self.config_manager.config
        await self.put_file(config.data_file_name, json.dumps(dataset.to_document(), indent=2))
        logger.debug("Replaced remote dataset with v%d", dataset.version)

    async def put_file(self, file_name: str, content: str) -> None:
        """
        Create or overwrite a single file in the remote document.

        Other files in the document are left untouched.

        Raises:
            RemoteStoreError: On network/HTTP failure.
        """
        config = self.config_manager.config
        body = {"files": {file_name: {"content": content}}}
        await self._request("PATCH", self._document_url(config), token=config.token, json_body=body)

    async def validate_token(self, token: str) -> bool:
        """Check whether ``token`` is accepted by the API."""
        config = self.config_manager.config
        try:
            await self._request("GET", f"{config.api_base.rstrip('/')}/user", token=token)
        except RemoteStoreError as e:
            logger.info("Credential validation failed: %s", e)
            return False
        return True

    async def ping(self) -> bool:
        """True when the API answers at all, whatever the status."""
        config = self.config_manager.config
        try:
            await self.http.get(config.api_base, headers={"Accept": ACCEPT_HEADER})
        except httpx.HTTPError as e:
            logger.debug("Remote unreachable: %s", e)
            return False
        return True

    async def create_document(self, token: str, speakers: list[dict[str, Any]]) -> str:
        """
        Create a new private remote document seeded with ``speakers``.

        Returns:
            The identifier of the new document.

        Raises:
            RemoteStoreError: If the document could not be created.
        """
        config = self.config_manager.config
        now = format_timestamp(utcnow())
        initial = {
            "version": 1,
            "lastModified": now,
            "speakers": speakers,
            "metadata": {"created": now, "source": "speakersync"},
        }
        body = {
            "description": DOCUMENT_DESCRIPTION,
            "public": False,
            "files": {config.data_file_name: {"content": json.dumps(initial, indent=2)}},
        }
        response = await self._request(
            "POST", f"{config.api_base.rstrip('/')}/gists", token=token, json_body=body
        )
        try:
            document_id = response.json().get("id")
        except (ValueError, AttributeError) as e:
            raise RemoteStoreError(
                f"Remote API returned an invalid response: {e}", status_code=response.status_code
            ) from e
        if not document_id:
            raise RemoteStoreError(
                "Remote API did not return a document id", status_code=response.status_code
            )
        logger.info("Created remote document %s", document_id)
        return str(document_id)
