"""Tests for the FastAPI proxy application."""

import asyncio

import httpx
from fastapi.testclient import TestClient

from conftest import FailingProvider, PrefixProvider
from lingoproxy.assets import DEFERRED_SCRIPT_PATH, LOOKUP_PATH, RECOVERY_SCRIPT_PATH
from lingoproxy.fetcher import OriginFetcher
from lingoproxy.server import create_app
from lingoproxy.store import MemoryTranslationStore, SegmentRow, hash_text
from lingoproxy.structures import ProxyOptions

HOME = (
    "<html><head><title>Shop</title></head><body>"
    "<h1>Welcome</h1>"
    '<a href="/about">About us</a>'
    "</body></html>"
)
ABOUT = "<html><head><title>About</title></head><body><h1>Our story</h1></body></html>"
SALE = "<html><head><title>Sale</title></head><body><p>Buy <b>now</b> today</p></body></html>"


class FakeOrigin:
    """Records requests and answers like a small origin site."""

    def __init__(self, *, offline: bool = False) -> None:
        self.requests = []
        self.offline = offline

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.offline:
            raise httpx.ConnectError("connection refused", request=request)
        path = request.url.path
        if path == "/":
            return httpx.Response(200, html=HOME)
        if path == "/about":
            return httpx.Response(200, html=ABOUT)
        if path == "/sale":
            return httpx.Response(200, html=SALE)
        if path == "/logo.png":
            return httpx.Response(200, content=b"PNG", headers={"content-type": "image/png", "x-origin": "1"})
        if path == "/old":
            return httpx.Response(301, headers={"location": "https://example.com/new?x=1"})
        return httpx.Response(404, html="<html><body><p>Missing</p></body></html>")


def make_client(provider=None, *, origin=None, store=None, **option_overrides):
    settings = {"origin": "https://example.com", "target_lang": "es", "deferred": False}
    settings.update(option_overrides)
    options = ProxyOptions(**settings)
    origin = origin or FakeOrigin()
    fetcher = OriginFetcher(
        options.origin,
        client=httpx.AsyncClient(transport=httpx.MockTransport(origin)),
    )
    app = create_app(provider or PrefixProvider(), options=options, store=store, fetcher=fetcher)
    return TestClient(app), origin


class TestProxy:
    def test_html_is_translated(self):
        client, origin = make_client()

        with client:
            response = client.get("/")

        assert response.status_code == 200
        assert "<h1>ES Welcome</h1>" in response.text
        assert 'href="/es/about"' in response.text
        assert origin.requests[0].headers["lingoproxy-language"] == "es"

    def test_translated_pathnames_route_back_to_the_origin(self):
        client, origin = make_client()

        with client:
            client.get("/")
            response = client.get("/es/about")

        assert response.status_code == 200
        assert "ES Our story" in response.text
        assert origin.requests[-1].url.path == "/about"

    def test_non_html_passes_through(self):
        client, _ = make_client()

        with client:
            response = client.get("/logo.png")

        assert response.content == b"PNG"
        assert response.headers["content-type"] == "image/png"
        assert response.headers["x-origin"] == "1"

    def test_redirects_point_at_the_proxy(self):
        client, _ = make_client()

        with client:
            response = client.get("/old", follow_redirects=False)

        assert response.status_code == 301
        assert response.headers["location"] == "https://testserver/new?x=1"

    def test_origin_status_is_kept(self):
        client, _ = make_client()

        with client:
            response = client.get("/gone")

        assert response.status_code == 404
        assert "ES Missing" in response.text

    def test_translation_failure_serves_original(self):
        client, _ = make_client(FailingProvider())

        with client:
            response = client.get("/")

        assert response.status_code == 200
        assert response.headers["x-error"] == "Translation failed"
        assert "<h1>Welcome</h1>" in response.text

    def test_strict_rendering_failure_serves_original(self):
        client, _ = make_client(
            PrefixProvider(transform=lambda text: text.replace("[HB1]", "").replace("[/HB1]", "")),
            strict=True,
        )

        with client:
            response = client.get("/sale")

        assert response.status_code == 200
        assert response.headers["x-error"] == "Rendering failed"
        assert "<p>Buy <b>now</b> today</p>" in response.text

    def test_unreachable_origin(self):
        client, _ = make_client(origin=FakeOrigin(offline=True))

        with client:
            response = client.get("/")

        assert response.status_code == 502
        assert response.text == "Fetch/parse failed"

    def test_deferred_page_then_lookup(self):
        client, _ = make_client(deferred=True)

        with client:
            page = client.get("/")
            # Background work runs on the server's loop; poll until it lands.
            hashes = [hash_text("Welcome")]
            body = {"segments": [{"hash": hashes[0], "kind": "text", "content": "Welcome"}]}
            result = {}
            for _ in range(50):
                result = client.post(LOOKUP_PATH, json=body).json()
                if result:
                    break

        assert "window.__LINGOPROXY_DEFERRED__=" in page.text
        assert result == {hashes[0]: "ES Welcome"}


class TestAssetRoutes:
    def test_scripts_are_served(self):
        client, _ = make_client()

        with client:
            recovery = client.get(RECOVERY_SCRIPT_PATH)
            deferred = client.get(DEFERRED_SCRIPT_PATH)

        assert recovery.status_code == 200
        assert recovery.headers["content-type"].startswith("application/javascript")
        assert "MutationObserver" in recovery.text
        assert LOOKUP_PATH in deferred.text

    def test_unknown_asset_is_not_proxied(self):
        client, origin = make_client()

        with client:
            response = client.get("/__lingoproxy/other.js")

        assert response.status_code == 404
        assert origin.requests == []

    def test_lookup_returns_cached_translations(self):
        store = MemoryTranslationStore()
        asyncio.run(
            store.batch_upsert_segments(
                1, "es", [SegmentRow(hash=hash_text("Hi [N1]"), source="Hi [N1]", translated="Hola [N1]")]
            )
        )
        client, _ = make_client(store=store)

        with client:
            found = client.post(
                LOOKUP_PATH,
                json={"segments": [{"hash": hash_text("Hi [N1]"), "kind": "text", "content": "Hi 5"}]},
            )
            broken = client.post(LOOKUP_PATH, content=b"not json", headers={"content-type": "application/json"})

        assert found.json() == {hash_text("Hi [N1]"): "Hola 5"}
        assert broken.json() == {}
        assert found.headers["cache-control"] == "no-store"
