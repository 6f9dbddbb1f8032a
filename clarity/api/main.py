"""FastAPI application for Clarity.

This module exposes the proxy that sits between the browser and the
upstream generative-text API.  One POST endpoint routes an ``action``
to the right prompt template, calls the upstream model through the
injected transport and returns either the optimized prompt or the
clarification questions.  It also exposes health, stats and metrics.
"""
from __future__ import annotations
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.concurrency import run_in_threadpool
from typing import Any, Dict
import os
import time
import logging

from clarity.models import router
from clarity.models.prompts import DEFAULT_LANGUAGE
from clarity.models.schemas import ErrorResponse
from clarity.utils.errors import ClarityError, InvalidInput
from clarity.utils.transport import GeminiTransport, MODEL_NAME
from clarity.utils.telemetry import log_event, inc, stats, prometheus_text

# Configuration via environment
APP_VERSION = os.environ.get("CLARITY_VERSION", "1.0.0")
SERVER_API_KEY = os.environ.get("CLARITY_API_KEY")  # fallback when the request carries none
ENDPOINTS = ("/api", "/.netlify/functions/api")

logger = logging.getLogger(__name__)

# App setup
app = FastAPI(title="Clarity: prompt optimization proxy", version=APP_VERSION)
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

_transport = GeminiTransport()


def get_transport() -> router.Transport:
    return _transport

# Error rendering

@app.exception_handler(ClarityError)
async def clarity_error_handler(request: Request, exc: ClarityError):
    inc("errors_total")
    inc(f"errors_{exc.code}_total")
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s", request.url.path)
    inc("errors_total")
    return JSONResponse(status_code=500, content={"message": "Internal Server Error", "error": ClarityError.code})

# Health check
@app.get("/health")
def health():
    return {"status": "ok", "version": APP_VERSION, "model": MODEL_NAME}

# Proxy endpoint

async def handle_action(request: Request, transport: router.Transport = Depends(get_transport)) -> Dict[str, Any]:
    inc("requests_total")
    try:
        payload = await request.json()
    except ValueError as exc:
        raise InvalidInput("Invalid request body.") from exc
    req = router.parse_request(payload)
    inc(f"requests_{req.action}_total")
    api_key = req.api_key or SERVER_API_KEY
    start = time.monotonic()
    try:
        # the upstream call blocks, so keep it off the event loop
        body = await run_in_threadpool(router.dispatch, req, transport, api_key, DEFAULT_LANGUAGE)
    except ClarityError as exc:
        logger.error("Action %s failed: %s (%s)", req.action, exc.message, exc.code)
        log_event({"type": req.action, "ok": False, "error": exc.code, "input_chars": len(req.input)})
        raise
    dt = (time.monotonic() - start) * 1000.0
    log_event({"type": req.action, "ok": True, "input_chars": len(req.input), "latency_ms": round(dt, 2)})
    return body


async def method_not_allowed():
    return JSONResponse(status_code=405, content={"message": "Method Not Allowed"}, headers={"Allow": "POST"})


for _path in ENDPOINTS:
    app.add_api_route(
        _path,
        handle_action,
        methods=["POST"],
        include_in_schema=_path == ENDPOINTS[0],
        responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse},
                   502: {"model": ErrorResponse}, 504: {"model": ErrorResponse}},
    )
    app.add_api_route(_path, method_not_allowed, methods=["GET", "PUT", "PATCH", "DELETE"], include_in_schema=False)

# Stats endpoint
@app.get("/v1/stats")
async def get_stats():
    return stats()

# Prometheus metrics
@app.get("/metrics", response_class=PlainTextResponse)
async def metrics():
    return prometheus_text()
