"""Document store backed by a note application's local REST API.

Speaks the vault endpoints of the Obsidian "Local REST API" plugin:
``GET``/``PUT /vault/{path}`` with a bearer key. Documents are addressed by
name; ``{folder}/{name}.md`` is their path in the vault.
"""

from __future__ import annotations

import logging
from datetime import date
from urllib.parse import quote

import httpx

from .errors import DocumentStoreError
from .store import parse_document_date

logger = logging.getLogger(__name__)

DEFAULT_REST_URL = "https://127.0.0.1:27124"


class RestDocumentStore:
    """Client for reading and writing notes over the local REST API."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        date_format: str = "%Y-%m-%d",
        folder: str = "",
        verify: bool = True,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.date_format = date_format
        self.folder = folder.strip("/")
        self._client = httpx.Client(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=30.0,
            verify=verify,
            transport=transport,
        )
        self._cache: dict[str, str] = {}

    def _vault_path(self, name: str) -> str:
        path = f"{self.folder}/{name}.md" if self.folder and "/" not in name else f"{name}.md"
        return "/vault/" + quote(path)

    def _request(self, method: str, name: str, **kwargs) -> httpx.Response:
        url = self._vault_path(name)
        try:
            resp = self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise DocumentStoreError(f"{method} {url} failed: {e}") from e
        return resp

    def _check(self, resp: httpx.Response) -> None:
        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise DocumentStoreError(
                f"{e.request.method} {e.request.url.path} returned {resp.status_code}"
            ) from e

    # ------------------------------------------------------------------
    # DocumentStore
    # ------------------------------------------------------------------

    def read_document(self, name: str, use_cache: bool = False) -> str:
        if use_cache and name in self._cache:
            return self._cache[name]
        resp = self._request("GET", name, headers={"Accept": "text/markdown"})
        self._check(resp)
        self._cache[name] = resp.text
        return resp.text

    def write_document(self, name: str, text: str) -> None:
        resp = self._request(
            "PUT",
            name,
            content=text.encode("utf-8"),
            headers={"Content-Type": "text/markdown"},
        )
        self._check(resp)
        self._cache[name] = text
        logger.debug("Uploaded %s (%d bytes)", name, len(text))

    def exists(self, name: str) -> bool:
        resp = self._request("GET", name, headers={"Accept": "text/markdown"})
        if resp.status_code == 404:
            return False
        self._check(resp)
        self._cache[name] = resp.text
        return True

    def resolve_or_create_document_for_date(self, day: date) -> str:
        name = self.filename_for_date(day)
        if not self.exists(name):
            logger.info("Creating periodic note %s", name)
            self.write_document(name, "")
        return name

    def date_for_document(self, name: str) -> date | None:
        return parse_document_date(name, self.date_format)

    def filename_for_date(self, day: date) -> str:
        return day.strftime(self.date_format)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> RestDocumentStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
