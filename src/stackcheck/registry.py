"""
Datasource discovery and name resolution.

``DatasourceRegistry.discover`` lists every backend the gateway fronts with a
single call and caches the result. ``resolve`` answers from that cache only,
so every check that needs the Prometheus or Loki uid sees the same record.

The cache is written once, before any check fans out, and only read
afterwards; no lock guards it.
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import quote

from stackcheck.errors import GatewayError, MalformedResponseError, NotFoundError
from stackcheck.gateway import GatewayClient
from stackcheck.models import Datasource, DatasourceKind, Session, parse_payload

logger = logging.getLogger(__name__)

DATASOURCES_PATH = "/api/datasources"


def _name_path(name: str) -> str:
    return f"{DATASOURCES_PATH}/name/{quote(name, safe='')}"


class DatasourceRegistry:
    """Run-scoped cache of the gateway's configured backends."""

    def __init__(self, gateway: GatewayClient):
        self.gateway = gateway
        self._by_name: Optional[dict[str, Datasource]] = None
        self._ordered: list[Datasource] = []

    @property
    def discovered(self) -> bool:
        return self._by_name is not None

    async def discover(self, session: Session) -> list[Datasource]:
        """
        List all configured backends.

        Only the first call reaches the network; later calls return the
        cached list.

        Raises:
            GatewayError, TransportError: The listing call failed.
            MalformedResponseError: The listing is not a list of records.
        """
        if self._by_name is not None:
            return list(self._ordered)

        payload = await self.gateway.get_json(DATASOURCES_PATH, session=session)
        if not isinstance(payload, list):
            raise MalformedResponseError("datasource listing is not a list", field="<root>")

        ordered = [parse_payload(Datasource, item, "datasource") for item in payload]
        by_name: dict[str, Datasource] = {}
        for ds in ordered:
            if ds.name in by_name:
                logger.warning(f"Duplicate datasource name {ds.name!r}; keeping the first")
                continue
            by_name[ds.name] = ds

        self._ordered = ordered
        self._by_name = by_name
        logger.info(f"Discovered {len(ordered)} datasources: {', '.join(by_name)}")
        return list(ordered)

    def resolve(self, name: str) -> Datasource:
        """
        Look up a backend by logical name from the discovery cache.

        Raises:
            RuntimeError: If ``discover`` has not run yet.
            NotFoundError: If no backend carries that name.
        """
        if self._by_name is None:
            raise RuntimeError("discover() must complete before resolve()")
        try:
            return self._by_name[name]
        except KeyError:
            raise NotFoundError(f"no datasource named {name!r}") from None

    def default(self) -> Optional[Datasource]:
        """Return the backend flagged as default, if any."""
        return next((ds for ds in self._ordered if ds.is_default), None)

    def by_kind(self, kind: DatasourceKind) -> list[Datasource]:
        return [ds for ds in self._ordered if ds.kind == kind]

    async def lookup(self, session: Session, name: str) -> Datasource:
        """
        Fetch a single backend record by name from the gateway.

        Unlike ``resolve`` this always hits the network; the suite uses it
        to confirm the gateway's own answer for unknown names.

        Raises:
            NotFoundError: The gateway answered 404.
        """
        try:
            payload = await self.gateway.get_json(_name_path(name), session=session)
        except GatewayError as e:
            if e.status_code == 404:
                raise NotFoundError(
                    f"gateway has no datasource named {name!r}", status_code=404
                ) from e
            raise
        return parse_payload(Datasource, payload, "datasource")

    async def check_health(self, session: Session, name: str) -> dict:
        """
        Run the gateway's health probe for a backend.

        Returns:
            The probe's JSON body (``{"status": "OK", "message": ...}``).

        Raises:
            NotFoundError: The backend is unknown (404).
            GatewayError: The probe failed.
        """
        path = f"{_name_path(name)}/health"
        try:
            payload = await self.gateway.get_json(path, session=session)
        except GatewayError as e:
            if e.status_code == 404:
                raise NotFoundError(
                    f"gateway has no datasource named {name!r}", status_code=404
                ) from e
            raise
        return payload if isinstance(payload, dict) else {}
