"""
HTTP server implementation for SendConf.

This module provides the REST API over the send configuration store:

    GET    /v1/send-configurations               list (paged, searchable)
    GET    /v1/send-configurations/{id}          read (?private=false for public view)
    POST   /v1/send-configurations               create
    PUT    /v1/send-configurations/{id}          update with consistency check
    DELETE /v1/send-configurations/{id}          delete
    GET    /v1/system-send-configuration         system record (public view)
    GET    /v1/health                            health check

Invariants:
    - Store endpoints require the X-Actor header naming a stored user
    - Private reads include "hash", the value to send back as originalHash
    - JSON request/response format

How to change safely:
    - Keep ERROR_STATUS in sync with errors.py
    - Version the API if breaking changes are needed
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

from aiohttp import web

from ..config import HttpConfig
from ..context import Context
from ..errors import (
    ChangedError,
    DependencyPresentError,
    NotFoundError,
    PermissionDeniedError,
    SendConfError,
    ValidationError,
)
from ..store.listing import ListingParams
from ..store.send_configurations import SendConfigurations
from ..store.users import get_context_tx

logger = logging.getLogger(__name__)

# Most specific classes first
ERROR_STATUS: list[tuple[type[SendConfError], int]] = [
    (PermissionDeniedError, 403),
    (NotFoundError, 404),
    (ChangedError, 409),
    (DependencyPresentError, 409),
    (ValidationError, 400),
]


def error_status(error: SendConfError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 500


def _json_error(exc_type: type[web.HTTPException], message: str) -> web.HTTPException:
    return exc_type(text=json.dumps({"error": message}), content_type="application/json")


def create_http_app(
    store: SendConfigurations,
    config: HttpConfig | None = None,
) -> web.Application:
    """Create an HTTP application for SendConf.

    Args:
        store: SendConfigurations instance
        config: HTTP server configuration

    Returns:
        aiohttp Application instance
    """
    config = config or HttpConfig()

    def add_cors_headers(request: web.Request, response: web.StreamResponse) -> None:
        origin = request.headers.get("Origin", "*")
        if "*" in config.cors_origins or origin in config.cors_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type, X-Actor"

    @web.middleware
    async def cors_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        if request.method == "OPTIONS":
            response = web.Response()
        else:
            try:
                response = await handler(request)
            except web.HTTPException as e:
                add_cors_headers(request, e)
                raise

        add_cors_headers(request, response)
        return response

    @web.middleware
    async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except SendConfError as e:
            return web.json_response(
                {"error": e.message, "error_code": e.code, "details": e.details},
                status=error_status(e),
            )
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return web.json_response(
                {"error": str(e), "error_code": "INTERNAL"},
                status=500,
            )

    app = web.Application(middlewares=[cors_middleware, error_middleware])

    app.router.add_get("/v1/send-configurations", lambda r: handle_list(r, store, config))
    app.router.add_post("/v1/send-configurations", lambda r: handle_create(r, store))
    app.router.add_get(
        r"/v1/send-configurations/{config_id:\d+}", lambda r: handle_get(r, store)
    )
    app.router.add_put(
        r"/v1/send-configurations/{config_id:\d+}", lambda r: handle_update(r, store)
    )
    app.router.add_delete(
        r"/v1/send-configurations/{config_id:\d+}", lambda r: handle_delete(r, store)
    )
    app.router.add_get("/v1/system-send-configuration", lambda r: handle_system(r, store))
    app.router.add_get("/v1/health", lambda r: handle_health(r, store))

    return app


def extract_context(request: web.Request, store: SendConfigurations) -> Context:
    """Resolve the caller from the X-Actor header.

    Raises:
        web.HTTPBadRequest: Header missing
        web.HTTPUnauthorized: No such user
    """
    actor = request.headers.get("X-Actor")
    if not actor:
        raise _json_error(web.HTTPBadRequest, "X-Actor header is required")

    try:
        with store.db.transaction() as tx:
            return get_context_tx(tx, actor)
    except NotFoundError:
        raise _json_error(web.HTTPUnauthorized, f"Unknown actor: {actor}") from None


async def _read_json_object(request: web.Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except json.JSONDecodeError:
        raise _json_error(web.HTTPBadRequest, "Invalid JSON body") from None

    if not isinstance(body, dict):
        raise _json_error(web.HTTPBadRequest, "JSON body must be an object")
    return body


def _int_query(request: web.Request, name: str, default: int) -> int:
    value = request.query.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise _json_error(web.HTTPBadRequest, f"Query parameter '{name}' must be an integer") from None


async def handle_list(
    request: web.Request, store: SendConfigurations, config: HttpConfig
) -> web.Response:
    """Handle GET /v1/send-configurations - List visible send configurations."""
    context = extract_context(request, store)

    params = ListingParams(
        offset=_int_query(request, "offset", 0),
        limit=min(_int_query(request, "limit", config.default_page_size), config.max_page_size),
        search=request.query.get("search") or None,
        order_by=request.query.get("order_by") or None,
        descending=request.query.get("order_dir", "asc").lower() == "desc",
    )

    page = await store.list_paged(context, params)
    return web.json_response(page.to_dict())


async def handle_get(request: web.Request, store: SendConfigurations) -> web.Response:
    """Handle GET /v1/send-configurations/{id} - Read a send configuration."""
    context = extract_context(request, store)
    config_id = int(request.match_info["config_id"])
    private = request.query.get("private", "true").lower() == "true"

    entity = await store.get_by_id(context, config_id, with_private_data=private)
    if private:
        entity["hash"] = store.hash(entity)

    return web.json_response(entity)


async def handle_create(request: web.Request, store: SendConfigurations) -> web.Response:
    """Handle POST /v1/send-configurations - Create a send configuration."""
    context = extract_context(request, store)
    body = await _read_json_object(request)

    config_id = await store.create(context, body)
    return web.json_response({"id": config_id}, status=201)


async def handle_update(request: web.Request, store: SendConfigurations) -> web.Response:
    """Handle PUT /v1/send-configurations/{id} - Update with consistency check."""
    context = extract_context(request, store)
    body = await _read_json_object(request)
    body["id"] = int(request.match_info["config_id"])

    await store.update_with_consistency_check(context, body)
    return web.Response(status=204)


async def handle_delete(request: web.Request, store: SendConfigurations) -> web.Response:
    """Handle DELETE /v1/send-configurations/{id} - Delete a send configuration."""
    context = extract_context(request, store)
    config_id = int(request.match_info["config_id"])

    await store.remove(context, config_id)
    return web.Response(status=204)


async def handle_system(request: web.Request, store: SendConfigurations) -> web.Response:
    """Handle GET /v1/system-send-configuration - Read the system send configuration."""
    extract_context(request, store)
    entity = await store.get_system_send_configuration()
    return web.json_response(entity)


async def handle_health(request: web.Request, store: SendConfigurations) -> web.Response:
    """Handle GET /v1/health - Health check."""
    healthy = store.db.exists()
    result: dict[str, Any] = {"healthy": healthy}
    if healthy:
        result["stats"] = store.db.get_stats()
    return web.json_response(result, status=200 if healthy else 503)


async def start_http_server(
    app: web.Application,
    host: str = "0.0.0.0",
    port: int = 8081,
) -> web.AppRunner:
    """Start serving an application.

    Args:
        app: Application from create_http_app
        host: Host to bind to
        port: Port to listen on

    Returns:
        Runner; call cleanup() on it to stop serving
    """
    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, host, port)
    await site.start()

    logger.info(f"HTTP server running on http://{host}:{port}")
    return runner
