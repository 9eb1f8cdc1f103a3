from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx
from fastapi import FastAPI, Header, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from .config import RuntimeSecrets
from .config_schema import AppConfig
from .errors import PreconditionError, RelayError, TranslationError
from .event_log import EventLogger, request_scope, truncate
from .media import CanonicalMediaRecord, MediaQuery
from .providers import (
    parse_media_query,
    parse_video_query,
    reel_metadata_descriptors,
    video_link_descriptors,
)
from .relay import open_relay
from .resolver import ResolutionFailure, build_strategies, has_video_link, resolve
from .translation import (
    AUTO_LANGUAGE,
    GenerativeTranslator,
    PublicTranslateClient,
    SleepFn,
    translate_text,
)


class ReelInfoRequest(BaseModel):
    url: str | None = None
    shortcode: str | None = None


class TranslateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str | None = None
    to: str | None = None
    source: str | None = Field(default=None, alias="from")


class VideoLinkRequest(BaseModel):
    url: str | None = None


def reel_info_payload(query: MediaQuery, record: CanonicalMediaRecord) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "success": True,
        "shortcode": query.shortcode,
        "url": query.url,
        "thumbnail_url": record.thumbnail_url,
        "caption": record.caption,
        "view_count": record.view_count,
        "like_count": record.like_count,
        "comment_count": record.comment_count,
        "owner": {
            "username": record.owner_username,
            "full_name": record.owner_full_name,
        },
        "is_video": record.is_video,
        "api_used": record.provider_used,
    }
    if record.taken_at is not None:
        payload["taken_at"] = record.taken_at
    return payload


def reel_info_failure_payload(failure: ResolutionFailure) -> dict[str, Any]:
    return {
        "success": False,
        "shortcode": failure.query.shortcode,
        "url": failure.query.url,
        "error": "Could not fetch reel info",
    }


def create_app(
    config: AppConfig,
    secrets: RuntimeSecrets,
    *,
    http_client: httpx.AsyncClient | None = None,
    generative_client: Any | None = None,
    logger: EventLogger | None = None,
    sleep_fn: SleepFn | None = None,
) -> FastAPI:
    """
    Build the HTTP service.

    A shared httpx.AsyncClient is created at startup unless one is injected; an
    injected client is left open for its owner to close.
    """
    log = logger or EventLogger(path=config.logging.path, min_level=config.logging.level)

    generative: GenerativeTranslator | None = None
    if secrets.generative_api_key:
        generative = GenerativeTranslator(
            secrets.generative_api_key,
            generative_cfg=config.generative,
            client=generative_client,
            logger=log,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned: httpx.AsyncClient | None = None
        if getattr(app.state, "http_client", None) is None:
            owned = httpx.AsyncClient(follow_redirects=True)
            app.state.http_client = owned
        try:
            yield
        finally:
            if owned is not None:
                await owned.aclose()
                app.state.http_client = None

    app = FastAPI(title="reel_gateway", version="0.1.0", lifespan=lifespan)
    app.state.http_client = http_client

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors.allow_origins),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Range", "X-Request-ID"],
        expose_headers=["Content-Length", "Content-Range", "Accept-Ranges", "X-Request-ID"],
    )

    @app.middleware("http")
    async def _request_id_middleware(request: Request, call_next: Any) -> Response:
        started = time.perf_counter()
        with request_scope(request.headers.get("X-Request-ID")) as rid:
            response = await call_next(request)
            response.headers["X-Request-ID"] = rid
            log.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                elapsed_ms=int((time.perf_counter() - started) * 1000),
            )
        return response

    def _client(request: Request) -> httpx.AsyncClient:
        client = request.app.state.http_client
        if client is None:
            raise RuntimeError("HTTP client is not initialised; is the app lifespan running?")
        return client

    @app.exception_handler(PreconditionError)
    async def _precondition_handler(request: Request, exc: PreconditionError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def _validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": "Invalid request body"})

    @app.exception_handler(RelayError)
    async def _relay_handler(request: Request, exc: RelayError) -> JSONResponse:
        if exc.status_code is None:
            return JSONResponse(status_code=502, content={"error": "Proxy failed"})
        return JSONResponse(
            status_code=502,
            content={"error": "Upstream error", "status": exc.status_code},
        )

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/reel-info")
    async def reel_info(body: ReelInfoRequest, request: Request) -> dict[str, Any]:
        query = parse_media_query(body.url, body.shortcode)
        strategies = build_strategies(
            reel_metadata_descriptors(secrets, providers=config.providers),
            client=_client(request),
            timeout_seconds=config.providers.timeout_seconds,
        )
        result = await resolve(query, strategies, operation="reel_metadata", logger=log)
        if isinstance(result, ResolutionFailure):
            return reel_info_failure_payload(result)
        return reel_info_payload(query, result)

    @app.post("/api/download-video")
    async def video_link(body: VideoLinkRequest, request: Request) -> dict[str, Any]:
        query = parse_video_query(body.url)
        strategies = build_strategies(
            video_link_descriptors(secrets),
            client=_client(request),
            timeout_seconds=config.providers.timeout_seconds,
            accept=has_video_link,
        )
        result = await resolve(query, strategies, operation="video_link", logger=log)
        if isinstance(result, ResolutionFailure):
            return {
                "success": False,
                "videoUrl": None,
                "thumbnailUrl": None,
                "error": "Could not fetch video link",
            }
        return {
            "success": True,
            "videoUrl": result.source_url,
            "thumbnailUrl": result.thumbnail_url or None,
            "api_used": result.provider_used,
        }

    @app.post("/api/translate")
    async def translate(body: TranslateRequest, request: Request) -> JSONResponse:
        translator = PublicTranslateClient(
            _client(request),
            endpoint=config.translation.public_endpoint,
            timeout_seconds=config.translation.timeout_seconds,
        )
        target = (body.to or "").strip() or config.translation.default_target
        try:
            result = await translate_text(
                body.text or "",
                target,
                source=(body.source or "").strip() or AUTO_LANGUAGE,
                translator=translator,
                translation_cfg=config.translation,
                generative=generative,
                sleep_fn=sleep_fn,
                logger=log,
            )
        except TranslationError as e:
            log.error(
                "translation_failed",
                status_code=e.status_code,
                detail=truncate(str(e), limit=300),
            )
            return JSONResponse(
                status_code=502,
                content={
                    "success": False,
                    "error": "Failed to translate",
                    "details": truncate(str(e), limit=300),
                },
            )

        return JSONResponse(
            content={
                "success": True,
                "original": result.original,
                "translated": result.translated,
                "from": result.source,
                "to": result.target,
            }
        )

    async def _relay(
        request: Request,
        url: str | None,
        range_header: str | None,
    ) -> StreamingResponse:
        stream = await open_relay(
            url,
            range_header=range_header,
            client=_client(request),
            relay_cfg=config.relay,
            logger=log,
        )
        return StreamingResponse(
            stream.iter_bytes(),
            status_code=stream.status_code,
            headers=stream.headers,
        )

    @app.get("/api/video-proxy")
    async def video_proxy(
        request: Request,
        url: str | None = Query(default=None),
        range_header: str | None = Header(default=None, alias="Range"),
    ) -> StreamingResponse:
        return await _relay(request, url, range_header)

    @app.get("/api/download-video")
    async def download_video(
        request: Request,
        url: str | None = Query(default=None),
        range_header: str | None = Header(default=None, alias="Range"),
    ) -> StreamingResponse:
        return await _relay(request, url, range_header)

    return app
