"""FastAPI application serving translated pages."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI, Request, Response
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse

from .assets import ASSET_PREFIX, DEFERRED_SCRIPT_PATH, LOOKUP_PATH, RECOVERY_SCRIPT_PATH, render_script
from .errors import LingoProxyError, TranslationError
from .fetcher import OriginFetchError, OriginFetcher, forwardable_headers, response_headers, rewrite_location
from .inflight import InFlightStore
from .lookup import lookup_translations
from .pipeline import PagePipeline
from .providers import TranslationProvider
from .store import MemoryTranslationStore, TranslationStore
from .structures import ProxyOptions
from .translator import TranslationOrchestrator

logger = logging.getLogger(__name__)

SCRIPT_HEADERS = {"Cache-Control": "public, max-age=3600"}


def _request_host(request: Request) -> str:
    return request.headers.get("x-forwarded-host") or request.headers.get("host") or ""


def create_app(
    provider: TranslationProvider,
    *,
    options: ProxyOptions,
    store: TranslationStore | None = None,
    fetcher: OriginFetcher | None = None,
    inflight: InFlightStore | None = None,
) -> FastAPI:
    """Build the proxy application for one origin and target language."""

    store = store if store is not None else MemoryTranslationStore()
    orchestrator = TranslationOrchestrator(provider, options=options, store=store, inflight=inflight)
    pipeline = PagePipeline(orchestrator, store, options=options)
    fetcher = fetcher or OriginFetcher(options.origin, timeout=options.fetch_timeout)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await orchestrator.drain()

    app = FastAPI(title="lingoproxy", lifespan=lifespan)
    app.state.options = options
    app.state.store = store
    app.state.orchestrator = orchestrator
    app.state.pipeline = pipeline

    @app.get(RECOVERY_SCRIPT_PATH)
    async def recovery_script() -> Response:
        return Response(render_script("recovery.js"), media_type="application/javascript", headers=SCRIPT_HEADERS)

    @app.get(DEFERRED_SCRIPT_PATH)
    async def deferred_script() -> Response:
        return Response(render_script("deferred.js"), media_type="application/javascript", headers=SCRIPT_HEADERS)

    @app.post(LOOKUP_PATH)
    async def translate_lookup(request: Request) -> JSONResponse:
        try:
            body: Any = await request.json()
        except ValueError:
            body = None
        translations: Dict[str, str] = await lookup_translations(store, options, body)
        return JSONResponse(translations, headers={"Cache-Control": "no-store"})

    @app.api_route("/{path:path}", methods=["GET", "HEAD", "POST"])
    async def proxy(path: str, request: Request) -> Response:
        if request.url.path.startswith(ASSET_PREFIX + "/"):
            return PlainTextResponse("Not found", status_code=404)
        host = _request_host(request)
        pathname = await pipeline.resolve_incoming_pathname(request.url.path)
        body = await request.body() if request.method == "POST" else None

        try:
            origin = await fetcher.fetch(
                pathname,
                query=request.url.query,
                method=request.method,
                headers=forwardable_headers(request.headers, options.target_lang),
                body=body,
            )
        except OriginFetchError as exc:
            logger.error("%s", exc)
            return PlainTextResponse("Fetch/parse failed", status_code=502)

        if origin.is_redirect:
            location = rewrite_location(origin.headers["location"], origin_host=options.origin_host, proxy_host=host)
            return Response(status_code=origin.status_code, headers={"Location": location})

        if not origin.is_html:
            return Response(
                content=origin.content,
                status_code=origin.status_code,
                headers=response_headers(origin.headers),
            )

        try:
            result = await pipeline.render(
                origin.text,
                pathname=pathname,
                proxy_host=host,
                status_code=origin.status_code,
            )
        except LingoProxyError as exc:
            logger.error("%s, returning original HTML: %s", type(exc).__name__, exc)
            reason = "Translation failed" if isinstance(exc, TranslationError) else "Rendering failed"
            return HTMLResponse(origin.text, status_code=origin.status_code, headers={"X-Error": reason})
        return HTMLResponse(result.html, status_code=origin.status_code)

    return app
