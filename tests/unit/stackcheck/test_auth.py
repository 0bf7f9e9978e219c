"""Tests for the credential exchange."""

from __future__ import annotations

import json

import httpx
import pytest

from stackcheck.auth import LOGIN_PATH, SessionAuthenticator
from stackcheck.errors import AuthError, FailureKind


@pytest.mark.asyncio
async def test_valid_credentials_return_session(fake_grafana):
    async with fake_grafana.gateway() as gateway:
        session = await SessionAuthenticator(gateway).authenticate("admin", "secret")

    assert session.token == fake_grafana.token
    assert session.username == "admin"
    assert fake_grafana.calls == [("POST", LOGIN_PATH)]


@pytest.mark.asyncio
async def test_login_posts_credentials_without_bearer(fake_grafana):
    async with fake_grafana.gateway() as gateway:
        await SessionAuthenticator(gateway).authenticate("admin", "secret")

    request = fake_grafana.requests[0]
    assert json.loads(request.content) == {"user": "admin", "password": "secret"}
    assert "Authorization" not in request.headers


@pytest.mark.asyncio
async def test_invalid_credentials_raise(fake_grafana):
    async with fake_grafana.gateway() as gateway:
        with pytest.raises(AuthError) as exc_info:
            await SessionAuthenticator(gateway).authenticate("admin", "wrong")

    assert exc_info.value.status_code == 401
    assert exc_info.value.kind is FailureKind.CLIENT_ERROR
    assert "Invalid username or password" in exc_info.value.diagnostic
    assert len(fake_grafana.calls) == 1


@pytest.mark.asyncio
async def test_response_without_token(fake_grafana):
    fake_grafana._login = lambda r: httpx.Response(200, json={"message": "Logged in"})

    async with fake_grafana.gateway() as gateway:
        with pytest.raises(AuthError) as exc_info:
            await SessionAuthenticator(gateway).authenticate("admin", "secret")

    assert exc_info.value.field == "token"
    assert exc_info.value.kind is FailureKind.MALFORMED


@pytest.mark.asyncio
async def test_non_json_login_body(fake_grafana):
    fake_grafana._login = lambda r: httpx.Response(200, text="<html>Grafana</html>")

    async with fake_grafana.gateway() as gateway:
        with pytest.raises(AuthError) as exc_info:
            await SessionAuthenticator(gateway).authenticate("admin", "secret")

    assert exc_info.value.kind is FailureKind.MALFORMED


@pytest.mark.asyncio
async def test_timeout_is_auth_error(fake_grafana):
    def slow(request):
        raise httpx.ConnectTimeout("connect timed out", request=request)

    fake_grafana._login = slow

    async with fake_grafana.gateway() as gateway:
        with pytest.raises(AuthError) as exc_info:
            await SessionAuthenticator(gateway).authenticate("admin", "secret", timeout=0.1)

    assert exc_info.value.kind is FailureKind.TRANSPORT
    assert "grafana.test" in exc_info.value.message


@pytest.mark.asyncio
async def test_server_error_on_login(fake_grafana):
    fake_grafana._login = lambda r: httpx.Response(500, json={"message": "database locked"})

    async with fake_grafana.gateway() as gateway:
        with pytest.raises(AuthError) as exc_info:
            await SessionAuthenticator(gateway).authenticate("admin", "secret")

    assert exc_info.value.kind is FailureKind.SERVER_ERROR
    assert exc_info.value.diagnostic == "HTTP 500: login rejected: database locked"
