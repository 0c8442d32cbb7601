"""
TouchGrass Verifier API
FastAPI perimeter in front of the verification-and-commit pipeline.

Routes:
  - GET  /health                    liveness + target contract
  - POST /api/verify                {challengeId, title, imageUrl} -> txHash
  - GET  /api/farcaster/{address}   identity lookup proxy (Neynar)

Perimeter controls live here and only here: CORS allowlist, per-IP rate
limiting via slowapi, request body size cap. Everything between request
parsing and the on-chain receipt is engine.pipeline.
"""

import asyncio
import logging
import os
import time
from typing import Any, List

import uvicorn
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from api.identity_proxy import lookup_farcaster_profile
from engine.config import VerifierSettings
from engine.errors import ConfigurationError, ErrorCategory
from engine.models import VerificationFailure
from engine.outcome_classifier import failure_for
from engine.pipeline import VerificationPipeline

load_dotenv()

# ─── Setup ────────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s :: %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
log = logging.getLogger("touchgrass.api")

PORT           = int(os.getenv("PORT", "3001"))
MAX_BODY_BYTES = int(os.getenv("MAX_BODY_BYTES", str(10 * 1024 * 1024)))   # image URLs / data URIs

# ─── Rate Limiter ─────────────────────────────────────────────────────────────
# Limits configurable via env, e.g. RATE_LIMIT_VERIFY="10/10minutes".
# RATE_LIMIT_STORAGE_URI="redis://localhost:6379" shares counters across workers.
RATE_LIMIT_VERIFY      = os.getenv("RATE_LIMIT_VERIFY", "5/10minutes")
RATE_LIMIT_IDENTITY    = os.getenv("RATE_LIMIT_IDENTITY", "30/minute")
RATE_LIMIT_STORAGE_URI = os.getenv("RATE_LIMIT_STORAGE_URI", "memory://")
limiter = Limiter(key_func=get_remote_address, storage_uri=RATE_LIMIT_STORAGE_URI)

app = FastAPI(
    title="TouchGrass Verifier API",
    description="AI evidence verification and on-chain challenge finalization",
    version="1.0.0",
)
app.state.limiter  = limiter
app.state.settings = None
app.state.pipeline = None


# ─── Error handlers ───────────────────────────────────────────────────────────
def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    if request.url.path.startswith("/api/farcaster"):
        message = "Too many identity lookups. Please try again later."
    else:
        message = "Too many verification attempts. Please try again in 10 minutes."
    log.warning(f"[LIMIT] {get_remote_address(request)} throttled on {request.url.path} ({exc.detail})")
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={"success": False, "message": message},
    )


def _failure_response(failure: VerificationFailure) -> JSONResponse:
    return JSONResponse(status_code=failure.http_status, content=failure.to_response())


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Body that is not a JSON object never reaches the pipeline.
    log.warning(f"[VERIFY] Malformed body on {request.url.path}: {exc.errors()[:1]}")
    return _failure_response(failure_for(ErrorCategory.VALIDATION_FAILED))


app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)
app.add_exception_handler(RequestValidationError, _request_validation_handler)


# ─── CORS ─────────────────────────────────────────────────────────────────────
# In production, set: ALLOWED_ORIGINS=https://touchgrass.app,https://www.touchgrass.app
_raw_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:5173")
ALLOWED_ORIGINS: List[str] = [o.strip() for o in _raw_origins.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


class BodySizeLimitMiddleware:
    """
    Caps request bodies at MAX_BODY_BYTES by counting the bytes actually
    received, so chunked uploads without Content-Length are capped too.
    The body is buffered (at most MAX_BODY_BYTES) and replayed downstream.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http" or scope["method"] not in ("POST", "PUT", "PATCH"):
            await self.app(scope, receive, send)
            return

        limit = MAX_BODY_BYTES
        path  = scope.get("path", "")
        declared = dict(scope.get("headers") or []).get(b"content-length", b"")
        if declared.isdigit() and int(declared) > limit:
            log.warning(f"[LIMIT] Rejected {declared.decode()}-byte body on {path}")
            await _body_too_large(scope, receive, send)
            return

        chunks, size = [], 0
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                return
            chunk = message.get("body", b"")
            size += len(chunk)
            if size > limit:
                log.warning(f"[LIMIT] Rejected streamed body over {limit} bytes on {path}")
                await _body_too_large(scope, receive, send)
                return
            chunks.append(chunk)
            if not message.get("more_body", False):
                break

        body = b"".join(chunks)
        replayed = False

        async def replay():
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await receive()

        await self.app(scope, replay, send)


async def _body_too_large(scope, receive, send) -> None:
    response = JSONResponse(
        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
        content={"success": False, "message": "Request body too large"},
    )
    await response(scope, receive, send)


app.add_middleware(BodySizeLimitMiddleware)


# ─── Startup / Shutdown ───────────────────────────────────────────────────────
@app.on_event("startup")
async def _startup() -> None:
    """Fail fast: refuse to serve without signing key, contract and AI key."""
    try:
        settings = VerifierSettings.from_env()
    except ConfigurationError as e:
        log.critical(f"FATAL: {e}")
        raise

    app.state.settings = settings
    app.state.pipeline = VerificationPipeline.from_settings(settings)

    log.info(f"🟢 Verifier Server running at http://localhost:{PORT}")
    log.info(f"   - Target Contract: {settings.contract_address}")
    log.info(f"   - Allowed Origins: {', '.join(ALLOWED_ORIGINS)}")
    log.info(f"   - AI timeout: {settings.evaluator_timeout_seconds:g}s")


@app.on_event("shutdown")
async def _shutdown() -> None:
    pipeline = app.state.pipeline
    if pipeline is not None:
        pipeline.close()
    log.info("Server closed.")


# ─── Dependencies ─────────────────────────────────────────────────────────────
def get_settings(request: Request) -> VerifierSettings:
    settings = request.app.state.settings
    if settings is None:
        raise HTTPException(status_code=503, detail="Verifier not initialized")
    return settings


def get_pipeline(request: Request) -> VerificationPipeline:
    pipeline = request.app.state.pipeline
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Verifier not initialized")
    return pipeline


# ─── Request Models ───────────────────────────────────────────────────────────
class VerifyChallengeRequest(BaseModel):
    # Typed loosely on purpose: the pipeline owns validation and answers with
    # the ValidationFailed category instead of FastAPI's 422 schema dump.
    challengeId: Any = None
    title:       Any = None
    imageUrl:    Any = None


# ─── Routes ───────────────────────────────────────────────────────────────────
@app.get("/health")
async def health(settings: VerifierSettings = Depends(get_settings)):
    return {
        "status":    "ok",
        "timestamp": int(time.time() * 1000),
        "contract":  settings.contract_address,
    }


@app.post("/api/verify")
@limiter.limit(RATE_LIMIT_VERIFY)
async def verify_challenge(
    request:  Request,                          # required by slowapi
    body:     VerifyChallengeRequest,
    pipeline: VerificationPipeline = Depends(get_pipeline),
):
    outcome = await pipeline.verify(body.challengeId, body.title, body.imageUrl)
    if isinstance(outcome, VerificationFailure):
        return _failure_response(outcome)
    return outcome.to_response()


@app.get("/api/farcaster/{address}")
@limiter.limit(RATE_LIMIT_IDENTITY)
async def farcaster_identity(request: Request, address: str):
    status_code, body = await asyncio.to_thread(
        lookup_farcaster_profile, address, os.getenv("NEYNAR_API_KEY")
    )
    return JSONResponse(status_code=status_code, content=body)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=PORT, timeout_graceful_shutdown=10)
