"""Credential exchange against the gateway login endpoint."""

from __future__ import annotations

import logging

from stackcheck.errors import (
    AuthError,
    FailureKind,
    MalformedResponseError,
    TransportError,
    classify_status,
)
from stackcheck.gateway import GatewayClient, decode_json, format_gateway_error
from stackcheck.models import Session
from stackcheck.timeouts import AUTH_TIMEOUT_S

logger = logging.getLogger(__name__)

LOGIN_PATH = "/api/auth/login"


class SessionAuthenticator:
    """
    Exchange a username and password for a bearer-token Session.

    The Session is returned to the caller, never stored on the gateway
    client, so every later call states which credential it uses.
    """

    def __init__(self, gateway: GatewayClient):
        self.gateway = gateway

    async def authenticate(
        self,
        username: str,
        password: str,
        timeout: float = AUTH_TIMEOUT_S,
    ) -> Session:
        """
        Log in and return the run's Session.

        Args:
            username: Gateway login.
            password: Gateway password.
            timeout: Timeout for the exchange in seconds.

        Raises:
            AuthError: On a non-2xx status, a timeout or connection failure,
                or a response without a ``token`` field.
        """
        try:
            response = await self.gateway.request(
                "POST",
                LOGIN_PATH,
                json={"user": username, "password": password},
                timeout=timeout,
            )
        except TransportError as e:
            raise AuthError(
                f"login to {self.gateway.base_url} failed: {e.message}",
                kind=FailureKind.TRANSPORT,
            ) from e

        if not response.is_success:
            code = response.status_code
            raise AuthError(
                f"login rejected: {format_gateway_error(response)}",
                kind=classify_status(code) if code >= 400 else FailureKind.MALFORMED,
                status_code=code,
            )

        try:
            body = decode_json(response, LOGIN_PATH)
        except MalformedResponseError as e:
            raise AuthError(e.message, kind=FailureKind.MALFORMED, field=e.field) from e

        token = body.get("token") if isinstance(body, dict) else None
        if not isinstance(token, str) or not token:
            raise AuthError(
                "login response carries no token",
                kind=FailureKind.MALFORMED,
                field="token",
            )

        session = Session(token=token, username=username)
        logger.info(f"Authenticated as {username} against {self.gateway.base_url}")
        return session
