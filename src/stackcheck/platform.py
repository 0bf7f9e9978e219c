"""Gateway-level endpoints: health, current user, dashboards."""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import quote

from stackcheck.errors import GatewayError, MalformedResponseError, NotFoundError
from stackcheck.gateway import GatewayClient
from stackcheck.models import (
    Dashboard,
    DashboardSummary,
    PlatformHealth,
    Session,
    UserInfo,
    build_dashboard,
    parse_payload,
)

logger = logging.getLogger(__name__)


class PlatformClient:
    """Read-only view of the gateway's own API."""

    def __init__(self, gateway: GatewayClient):
        self.gateway = gateway

    async def health(self, session: Session) -> PlatformHealth:
        payload = await self.gateway.get_json("/api/health", session=session)
        return parse_payload(PlatformHealth, payload, "health")

    async def current_user(self, session: Session) -> UserInfo:
        payload = await self.gateway.get_json("/api/user", session=session)
        return parse_payload(UserInfo, payload, "user")

    async def search_dashboards(
        self,
        session: Session,
        query: Optional[str] = None,
        tag: Optional[str] = None,
    ) -> list[DashboardSummary]:
        """List dashboards (``type=dash-db``), optionally filtered server-side."""
        params = {"type": "dash-db"}
        if query:
            params["query"] = query
        if tag:
            params["tag"] = tag
        payload = await self.gateway.get_json("/api/search", session=session, params=params)
        if not isinstance(payload, list):
            raise MalformedResponseError("dashboard search is not a list", field="<root>")
        return [parse_payload(DashboardSummary, hit, "dashboard search hit") for hit in payload]

    async def get_dashboard(self, session: Session, uid: str) -> Dashboard:
        """
        Fetch one dashboard by uid.

        Raises:
            NotFoundError: The gateway answered 404.
        """
        path = f"/api/dashboards/uid/{quote(uid, safe='')}"
        try:
            payload = await self.gateway.get_json(path, session=session)
        except GatewayError as e:
            if e.status_code == 404:
                raise NotFoundError(f"no dashboard with uid {uid!r}", status_code=404) from e
            raise
        return build_dashboard(uid, payload)
