"""
OAuth relay server.

Stateless HTTP service that holds the OAuth client secret for a static site:
redirects to the provider's authorization page, exchanges codes for tokens,
classifies the caller's membership and proxies avatar images.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, Optional

from fastapi import FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response, StreamingResponse
from starlette.background import BackgroundTask
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from patron_gate.errors import MissingParameter, PatronGateError, Unauthorized, UpstreamError
from patron_gate.membership import classify_membership
from patron_gate.relay.config import load_relay_config
from patron_gate.relay.cors import cors_headers
from patron_gate.relay.provider import (
    DEFAULT_IMAGE_CONTENT_TYPE,
    build_authorize_url,
    exchange_code_for_tokens,
    fetch_identity,
    open_image,
    validate_image_url,
)
from patron_gate.util import random_state

logger = logging.getLogger(__name__)

IMAGE_CACHE_CONTROL = "public, max-age=86400"
_IMAGE_CHUNK_BYTES = 64 * 1024

app = FastAPI(title="patron_gate OAuth relay", docs_url=None, redoc_url=None, openapi_url=None)


@app.exception_handler(PatronGateError)
async def _handle_patron_gate_error(_request: Request, exc: PatronGateError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message, "kind": exc.kind})


@app.exception_handler(StarletteHTTPException)
async def _handle_http_exception(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.middleware("http")
async def relay_guard(request: Request, call_next):
    """Misconfiguration guard, CORS on every response, request logging."""
    start_time = time.time()
    logger.debug("%s %s", request.method, request.url.path)

    cfg = load_relay_config()
    if not cfg.configured:
        logger.error("Relay misconfigured: PATREON_CLIENT_ID and PATREON_CLIENT_SECRET are required")
        return PlainTextResponse("Missing required configuration", status_code=500)

    headers = cors_headers(request.headers.get("origin"), cfg.allowed_origins)
    if request.method == "OPTIONS":
        return Response(status_code=200, headers=headers)

    try:
        response = await call_next(request)
    except Exception as e:
        process_time = time.time() - start_time
        logger.exception("%s %s - ERROR after %.3fs: %s", request.method, request.url.path, process_time, str(e))
        response = JSONResponse(status_code=500, content={"error": "Internal Server Error"})

    for key, value in headers.items():
        response.headers[key] = value
    process_time = time.time() - start_time
    logger.debug("%s %s - %d (%.3fs)", request.method, request.url.path, response.status_code, process_time)
    return response


@app.get("/")
def authorize(state: Optional[str] = Query(None), redirect_uri: Optional[str] = Query(None)) -> RedirectResponse:
    """Redirect the browser to the provider's authorization page."""
    cfg = load_relay_config()
    url = build_authorize_url(cfg, redirect_uri=redirect_uri, state=state or random_state())
    resp = RedirectResponse(url=url, status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@app.post("/token")
async def token(request: Request) -> JSONResponse:
    """Exchange an authorization code for tokens (server-to-server, uses the client secret)."""
    cfg = load_relay_config()
    try:
        body = await request.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        raise MissingParameter("Missing authorization code")

    code = str(body.get("code") or "").strip()
    if not code:
        raise MissingParameter("Missing authorization code")
    redirect_uri = str(body.get("redirect_uri") or "").strip() or None

    tokens = await run_in_threadpool(exchange_code_for_tokens, cfg, code=code, redirect_uri=redirect_uri)
    resp = JSONResponse(content=tokens)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _bearer_token(authorization: Optional[str]) -> str:
    value = (authorization or "").strip()
    if not value.startswith("Bearer "):
        raise Unauthorized("Missing or invalid authorization header")
    access_token = value[len("Bearer ") :].strip()
    if not access_token:
        raise Unauthorized("Missing or invalid authorization header")
    return access_token


@app.get("/identity")
def identity(authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
    """Fetch the caller's identity and classify their membership for the configured campaign."""
    cfg = load_relay_config()
    access_token = _bearer_token(authorization)
    document = fetch_identity(cfg, access_token=access_token)
    try:
        result = classify_membership(document, campaign_id=cfg.campaign_id, creator_id=cfg.creator_id)
    except ValueError as e:
        logger.warning("Identity document rejected: %s", str(e))
        raise UpstreamError("Failed to fetch user data") from e
    logger.info(
        "Identity classified: user=%s membership_type=%s", result.user.id, result.membership_type.value
    )
    return result.to_wire()


@app.get("/proxy-image")
def proxy_image(url: Optional[str] = Query(None)) -> StreamingResponse:
    """Stream an allow-listed avatar image back to the browser."""
    cfg = load_relay_config()
    image_url = validate_image_url(url)
    upstream = open_image(cfg, image_url)
    content_type = upstream.headers.get("Content-Type") or DEFAULT_IMAGE_CONTENT_TYPE
    return StreamingResponse(
        upstream.iter_content(chunk_size=_IMAGE_CHUNK_BYTES),
        media_type=content_type,
        headers={"Cache-Control": IMAGE_CACHE_CONTROL},
        background=BackgroundTask(upstream.close),
    )


def run(host: str = "0.0.0.0", port: int = 8787) -> None:
    import uvicorn

    log_level = os.getenv("LOG_LEVEL", "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    cfg = load_relay_config()
    # Never log the secret; presence only.
    logger.info(
        "Relay config: client_id_set=%s client_secret_set=%s campaign_id=%s allowed_origins=%s",
        bool(cfg.client_id),
        bool(cfg.client_secret),
        cfg.campaign_id,
        ",".join(cfg.allowed_origins) or "*",
    )
    logger.info("Starting OAuth relay on %s:%d (log_level=%s)", host, port, log_level)
    uvicorn.run(app, host=host, port=port, log_level=uvicorn_log_level)
