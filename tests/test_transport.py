from __future__ import annotations

import json
from typing import Any

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from stylesync._transport import AjaxTransport, RestTransport, error_for_code, error_for_status
from stylesync.config import SyncConfig
from stylesync.exceptions import (
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitedError,
    ServerError,
    StyleSyncError,
    ValidationFailedError,
)


def _config(server: TestServer, **overrides: Any) -> SyncConfig:
    overrides.setdefault("nonce", "nonce-123")
    return SyncConfig(
        base_url=str(server.make_url("/wp-json")),
        ajax_url=str(server.make_url("/wp-admin/admin-ajax.php")),
        **overrides,
    )


def _rest_app(captured: list[dict[str, Any]]) -> web.Application:
    async def get_settings(request: web.Request) -> web.Response:
        captured.append({"nonce": request.headers.get("X-WP-Nonce"), "inm": request.headers.get("If-None-Match")})
        if request.headers.get("If-None-Match") == '"v1"':
            return web.Response(status=304)
        return web.json_response(
            {"success": True, "data": {"menu_background": "#23282d"}},
            headers={"ETag": '"v1"', "X-API-Deprecated": "true"},
        )

    async def save_settings(request: web.Request) -> web.Response:
        captured.append({"body": await request.json()})
        return web.json_response({"success": True, "data": {"saved": True}})

    async def forbidden(_request: web.Request) -> web.Response:
        return web.json_response({"code": "rest_forbidden", "message": "Sorry, you are not allowed"}, status=403)

    async def missing(_request: web.Request) -> web.Response:
        return web.json_response({"code": "not_found", "message": "Theme not found"}, status=404)

    async def throttled(_request: web.Request) -> web.Response:
        return web.json_response({"message": "Too many requests"}, status=429, headers={"Retry-After": "3"})

    async def invalid(_request: web.Request) -> web.Response:
        return web.json_response(
            {
                "code": "rest_invalid_param",
                "message": "Invalid parameter(s): menu_background",
                "data": {"params": {"menu_background": "Invalid color"}},
            },
            status=400,
        )

    async def broken(_request: web.Request) -> web.Response:
        return web.Response(status=500, text="Internal Server Error")

    app = web.Application()
    app.router.add_get("/wp-json/mas-v2/v1/settings", get_settings)
    app.router.add_post("/wp-json/mas-v2/v1/settings", save_settings)
    app.router.add_get("/wp-json/mas-v2/v1/forbidden", forbidden)
    app.router.add_get("/wp-json/mas-v2/v1/missing", missing)
    app.router.add_get("/wp-json/mas-v2/v1/throttled", throttled)
    app.router.add_post("/wp-json/mas-v2/v1/invalid", invalid)
    app.router.add_get("/wp-json/mas-v2/v1/broken", broken)
    return app


@pytest.mark.asyncio
async def test_rest_get_unwraps_envelope_and_sends_nonce() -> None:
    captured: list[dict[str, Any]] = []
    async with TestServer(_rest_app(captured)) as server, aiohttp.ClientSession() as http:
        transport = RestTransport(_config(server), http)

        response = await transport.send("GET", "/settings")

    assert response.status == 200
    assert response.body == {"menu_background": "#23282d"}
    assert response.etag == '"v1"'
    assert response.deprecated
    assert captured[0]["nonce"] == "nonce-123"


@pytest.mark.asyncio
async def test_rest_conditional_get_returns_not_modified() -> None:
    captured: list[dict[str, Any]] = []
    async with TestServer(_rest_app(captured)) as server, aiohttp.ClientSession() as http:
        transport = RestTransport(_config(server), http)

        response = await transport.send("GET", "/settings", headers={"If-None-Match": '"v1"'})

    assert response.not_modified
    assert response.body is None


@pytest.mark.asyncio
async def test_rest_post_sends_json_body() -> None:
    captured: list[dict[str, Any]] = []
    async with TestServer(_rest_app(captured)) as server, aiohttp.ClientSession() as http:
        transport = RestTransport(_config(server), http)

        response = await transport.send("POST", "/settings", {"menu_background": "#000"})

    assert response.body == {"saved": True}
    assert captured[0]["body"] == {"menu_background": "#000"}


@pytest.mark.asyncio
async def test_rest_error_statuses_are_classified() -> None:
    async with TestServer(_rest_app([])) as server, aiohttp.ClientSession() as http:
        transport = RestTransport(_config(server), http)

        with pytest.raises(PermissionDeniedError) as forbidden:
            await transport.send("GET", "/forbidden")
        with pytest.raises(NotFoundError):
            await transport.send("GET", "/missing")
        with pytest.raises(RateLimitedError) as throttled:
            await transport.send("GET", "/throttled")
        with pytest.raises(ValidationFailedError) as invalid:
            await transport.send("POST", "/invalid", {"menu_background": "nope"})
        with pytest.raises(ServerError) as broken:
            await transport.send("GET", "/broken")

    assert forbidden.value.status_code == 403
    assert forbidden.value.details == {"code": "rest_forbidden"}
    assert throttled.value.retry_after == 3.0
    assert invalid.value.problems == ["menu_background: Invalid color"]
    assert broken.value.status_code == 500
    assert broken.value.path == "/broken"


@pytest.mark.asyncio
async def test_unreachable_host_raises_network_error() -> None:
    config = SyncConfig(base_url="http://127.0.0.1:1/wp-json")
    async with aiohttp.ClientSession() as http:
        transport = RestTransport(config, http)

        with pytest.raises(NetworkError):
            await transport.send("GET", "/settings")


def _ajax_app(captured: list[dict[str, str]]) -> web.Application:
    async def admin_ajax(request: web.Request) -> web.Response:
        form = {key: str(value) for key, value in (await request.post()).items()}
        captured.append(form)
        action = form.get("action")
        if form.get("nonce") != "nonce-123":
            return web.json_response({"success": False, "data": {"code": "invalid_nonce", "message": "Bad nonce"}})
        if action == "mas_v2_save_settings":
            return web.json_response({"success": True, "data": {"saved": json.loads(form["settings"])}})
        if action == "mas_v2_get_settings":
            return web.json_response({"success": True, "data": {"menu_background": "#23282d"}})
        return web.Response(text="0")

    app = web.Application()
    app.router.add_post("/wp-admin/admin-ajax.php", admin_ajax)
    return app


@pytest.mark.asyncio
async def test_ajax_posts_form_encoded_action() -> None:
    captured: list[dict[str, str]] = []
    async with TestServer(_ajax_app(captured)) as server, aiohttp.ClientSession() as http:
        transport = AjaxTransport(_config(server), http)

        response = await transport.send("POST", "mas_v2_save_settings", {"settings": {"menu_background": "#000"}})

    assert response.body == {"saved": {"menu_background": "#000"}}
    assert captured[0]["action"] == "mas_v2_save_settings"
    assert json.loads(captured[0]["settings"]) == {"menu_background": "#000"}


@pytest.mark.asyncio
async def test_ajax_failure_envelope_is_classified() -> None:
    async with TestServer(_ajax_app([])) as server, aiohttp.ClientSession() as http:
        transport = AjaxTransport(_config(server, nonce=""), http)

        with pytest.raises(PermissionDeniedError, match="Bad nonce"):
            await transport.send("POST", "mas_v2_get_settings")


@pytest.mark.asyncio
async def test_ajax_unknown_action_is_malformed() -> None:
    async with TestServer(_ajax_app([])) as server, aiohttp.ClientSession() as http:
        transport = AjaxTransport(_config(server), http)

        with pytest.raises(ServerError):
            await transport.send("POST", "mas_v2_does_not_exist")


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        (401, PermissionDeniedError),
        (403, PermissionDeniedError),
        (404, NotFoundError),
        (422, ValidationFailedError),
        (429, RateLimitedError),
        (502, ServerError),
        (503, ServerError),
    ],
)
def test_error_for_status_mapping(status: int, expected: type[StyleSyncError]) -> None:
    error = error_for_status(status, {"message": "nope"}, path="/settings")

    assert type(error) is expected
    assert str(error) == "nope"
    assert error is not None and error.status_code == status


def test_error_for_status_success_and_not_modified() -> None:
    assert error_for_status(200) is None
    assert error_for_status(304) is None


def test_error_for_status_unlisted_client_error_is_base_error() -> None:
    error = error_for_status(409, None, path="/settings")

    assert type(error) is StyleSyncError
    assert str(error) == "HTTP 409 from /settings"


def test_error_for_code_mapping() -> None:
    assert isinstance(error_for_code("invalid_nonce", "x"), PermissionDeniedError)
    assert isinstance(error_for_code("backup_not_found", "x"), NotFoundError)
    assert isinstance(error_for_code("invalid_settings", "x"), ValidationFailedError)
    assert isinstance(error_for_code("rate_limited", "x"), RateLimitedError)
    assert isinstance(error_for_code("save_failed", "x"), ServerError)
