from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from geoindex.core.config import settings
from geoindex.core.errors import SolrConnectionError, SolrError

logger = logging.getLogger(__name__)


def _error_message(r: httpx.Response) -> str:
    # Try parse JSON error payload first
    try:
        j = r.json()
    except Exception:
        j = None

    msg = None
    if isinstance(j, dict) and isinstance(j.get("error"), dict):
        err = j["error"]
        msg = err.get("msg")
        # schema API reports per-command messages in details[]
        for d in err.get("details") or []:
            if isinstance(d, dict) and d.get("errorMessages"):
                msg = f"{msg}: {' '.join(str(m).strip() for m in d['errorMessages'])}"
    return msg or (r.text[:2000] if isinstance(r.text, str) else "")


class SolrClient:
    """Minimal Solr HTTP client for one core (schema API, JSON updates, select, ping)."""

    def __init__(
        self,
        base_url: str,
        core_name: str,
        *,
        connect_timeout_s: float = 10,
        request_timeout_s: float = 60,
        transport: httpx.BaseTransport | None = None,
    ):
        self.core_url = base_url.rstrip("/") + "/" + core_name.strip("/")
        self._client = httpx.Client(
            base_url=self.core_url,
            timeout=httpx.Timeout(request_timeout_s, connect=connect_timeout_s),
            follow_redirects=True,
            trust_env=False,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "SolrClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Any = None,
        json: Any = None,
        timeout_s: float | None = None,
        allow_404: bool = False,
    ) -> Optional[dict]:
        kwargs: dict[str, Any] = {"params": params}
        if json is not None:
            kwargs["json"] = json
        if timeout_s is not None:
            kwargs["timeout"] = timeout_s

        try:
            r = self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise SolrConnectionError(f"Solr not reachable at {self.core_url}: {e}") from e

        if allow_404 and r.status_code == 404:
            return None

        if not r.is_success:
            raise SolrError(
                f"Solr error HTTP {r.status_code}: {_error_message(r)}",
                code=r.status_code,
            )

        try:
            return r.json()
        except ValueError as e:
            raise SolrError(f"Solr returned invalid JSON: {r.text[:200]}") from e

    # -- schema --------------------------------------------------------------

    def field_exists(self, name: str) -> bool:
        return self._request("GET", f"/schema/fields/{name}", allow_404=True) is not None

    def field_type_exists(self, name: str) -> bool:
        return self._request("GET", f"/schema/fieldtypes/{name}", allow_404=True) is not None

    def _schema_command(self, command: str, definition: dict) -> bool:
        """Run one schema command; returns False when Solr reports that it already exists."""
        try:
            self._request("POST", "/schema", json={command: definition})
        except SolrConnectionError:
            raise
        except SolrError as e:
            if "already exists" in str(e).lower():
                logger.debug("%s %s: already exists", command, definition.get("name"))
                return False
            raise
        return True

    def add_field(self, definition: dict) -> bool:
        return self._schema_command("add-field", definition)

    def add_field_type(self, definition: dict) -> bool:
        return self._schema_command("add-field-type", definition)

    # -- update --------------------------------------------------------------

    def add_documents(self, docs: list[dict], *, timeout_s: float | None = None) -> dict:
        return self._request("POST", "/update", json=docs, timeout_s=timeout_s) or {}

    def delete_by_query(self, query: str) -> dict:
        return self._request("POST", "/update", json={"delete": {"query": query}}) or {}

    def commit(self) -> dict:
        return self._request("POST", "/update", json={"commit": {}}) or {}

    # -- search --------------------------------------------------------------

    def query(self, params: list[tuple[str, Any]], *, timeout_s: float | None = None) -> dict:
        """Run a /select request; `params` is a list of pairs so fq may repeat."""
        return self._request(
            "GET",
            "/select",
            params=[*params, ("wt", "json")],
            timeout_s=timeout_s,
        ) or {}

    def ping(self) -> dict:
        return self._request("GET", "/admin/ping") or {}


def get_solr_client_for_indexing() -> SolrClient:
    return SolrClient(
        settings.solr_url,
        settings.solr_core_name,
        connect_timeout_s=settings.solr_connect_timeout_seconds,
        request_timeout_s=settings.solr_request_timeout_seconds,
    )


def get_solr_client_for_searching() -> SolrClient:
    return SolrClient(
        settings.solr_url,
        settings.solr_core_name,
        connect_timeout_s=settings.solr_connect_timeout_seconds,
        request_timeout_s=settings.solr_query_timeout_seconds,
    )


def is_solr_available() -> bool:
    try:
        with get_solr_client_for_searching() as client:
            return str(client.ping().get("status") or "").upper() == "OK"
    except SolrError as e:
        logger.warning("Solr ping failed: %s", e)
        return False
