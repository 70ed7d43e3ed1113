"""End-to-end tests for the page pipeline."""

import asyncio

import pytest

from conftest import FailingProvider, PrefixProvider, no_wait
from lingoproxy.assets import FLICKER_GUARD_CSS, RECOVERY_SCRIPT_PATH
from lingoproxy.errors import PlaceholderViolation, TranslationError
from lingoproxy.lookup import lookup_translations
from lingoproxy.pipeline import PagePipeline
from lingoproxy.reconcile import DeferredPoller
from lingoproxy.store import MemoryTranslationStore, PathRow
from lingoproxy.structures import ProxyOptions
from lingoproxy.translator import TranslationOrchestrator

PAGE = (
    "<html><head><title>Shop</title></head><body>"
    "<h1>Welcome</h1>"
    "<p>Buy <b>now</b> for 20 dollars</p>"
    '<a href="/about">About us</a>'
    "</body></html>"
)

SPA_PAGE = PAGE.replace(
    "</body>",
    '<script id="__NEXT_DATA__" type="application/json">{}</script></body>',
)


def make_pipeline(provider, **option_overrides):
    settings = {"origin": "https://example.com", "target_lang": "es", "deferred": False}
    settings.update(option_overrides)
    options = ProxyOptions(**settings)
    store = MemoryTranslationStore()
    orchestrator = TranslationOrchestrator(provider, options=options, store=store)
    return PagePipeline(orchestrator, store, options=options), store


class TestImmediateRender:
    def test_translates_page_and_pathnames(self):
        provider = PrefixProvider()
        pipeline, store = make_pipeline(provider)

        result = asyncio.run(pipeline.render(PAGE, pathname="/", proxy_host="localhost:8000"))

        assert "<title>ES Shop</title>" in result.html
        assert "<h1>ES Welcome</h1>" in result.html
        assert "<p>ES Buy <b>now</b> for 20 dollars</p>" in result.html
        assert 'lang="es"' in result.html
        assert 'href="/es/about"' in result.html
        assert "ES About us" in result.html
        assert "Buy [HB1]now[/HB1] for [N1] dollars" in provider.texts
        assert result.pathname_map == {"/about": "/es/about"}
        assert store.pathnames[(1, "es", "/about")] == "/es/about"

        stats = result.stats
        assert (stats.extracted, stats.cached, stats.translated) == (4, 0, 4)
        assert (stats.total_paths, stats.new_paths) == (1, 1)
        assert result.pending == []
        assert result.dictionary is None

    def test_second_render_is_served_from_cache(self):
        provider = PrefixProvider()
        pipeline, _ = make_pipeline(provider)

        asyncio.run(pipeline.render(PAGE, proxy_host="localhost:8000"))
        calls = len(provider.calls)
        result = asyncio.run(pipeline.render(PAGE, proxy_host="localhost:8000"))

        assert len(provider.calls) == calls
        assert result.stats.cached == 4
        assert result.stats.translated == 0
        assert "<h1>ES Welcome</h1>" in result.html

    def test_numbers_share_one_cache_entry(self):
        provider = PrefixProvider()
        pipeline, store = make_pipeline(provider, translate_paths=False)

        asyncio.run(pipeline.render("<html><body><h1>Only 3 left</h1></body></html>"))
        result = asyncio.run(pipeline.render("<html><body><h1>Only 7 left</h1></body></html>"))

        assert provider.texts == ["Only [N1] left"]
        assert "<h1>ES Only 7 left</h1>" in result.html
        assert len(store.segments) == 1

    def test_translation_failure_propagates(self):
        pipeline, _ = make_pipeline(FailingProvider())

        with pytest.raises(TranslationError):
            asyncio.run(pipeline.render(PAGE))

    def test_pathname_failure_keeps_original_links(self):
        provider = PrefixProvider(fail_on=["/about"])
        pipeline, _ = make_pipeline(provider)

        result = asyncio.run(pipeline.render(PAGE, proxy_host="localhost:8000"))

        assert "<h1>ES Welcome</h1>" in result.html
        assert 'href="/about"' in result.html
        assert any("Pathname translation failed" in message for message in result.stats.error_messages)

    def test_cached_pathnames_resolve_incoming_requests(self):
        pipeline, store = make_pipeline(PrefixProvider())
        asyncio.run(store.batch_upsert_pathnames(1, "es", [PathRow(original="/product/[N1]", translated="/producto/[N1]")]))

        assert asyncio.run(pipeline.resolve_incoming_pathname("/producto/42")) == "/product/42"
        assert asyncio.run(pipeline.resolve_incoming_pathname("/unknown")) == "/unknown"

    def test_error_status_skips_pathnames(self):
        provider = PrefixProvider()
        pipeline, _ = make_pipeline(provider)

        result = asyncio.run(pipeline.render(PAGE, status_code=404))

        assert result.pathname_map == {}
        assert all(item.type == "segment" for call in provider.calls for item in call)


class TestPlaceholderViolations:
    @staticmethod
    def dropping_provider():
        return PrefixProvider(transform=lambda text: text.replace("[HB1]", "").replace("[/HB1]", ""))

    def test_lenient_mode_keeps_source_segment(self):
        pipeline, _ = make_pipeline(self.dropping_provider(), translate_paths=False)

        result = asyncio.run(pipeline.render(PAGE))

        assert "<p>Buy <b>now</b> for 20 dollars</p>" in result.html
        assert result.stats.error_messages

    def test_strict_mode_raises(self):
        pipeline, _ = make_pipeline(self.dropping_provider(), translate_paths=False, strict=True)

        with pytest.raises(PlaceholderViolation):
            asyncio.run(pipeline.render(PAGE))


class TestRecovery:
    def test_spa_pages_carry_a_dictionary(self):
        pipeline, _ = make_pipeline(PrefixProvider())

        result = asyncio.run(pipeline.render(SPA_PAGE, proxy_host="localhost:8000"))

        assert result.dictionary is not None
        assert result.dictionary.text["Welcome"] == "ES Welcome"
        assert result.dictionary.html["Buy now for 20 dollars"] == "ES Buy <b>now</b> for 20 dollars"
        assert result.dictionary.paths == {"/about": "/es/about"}
        assert RECOVERY_SCRIPT_PATH in result.html
        assert "window.__LINGOPROXY_RECOVERY__=" in result.html
        assert FLICKER_GUARD_CSS in result.html

    def test_static_pages_get_no_recovery_script(self):
        pipeline, _ = make_pipeline(PrefixProvider())

        result = asyncio.run(pipeline.render(PAGE))
        assert "__LINGOPROXY_RECOVERY__" not in result.html


class TestDeferredRender:
    def test_misses_are_marked_then_settled(self):
        provider = PrefixProvider()
        pipeline, store = make_pipeline(provider, deferred=True)

        async def run():
            result = await pipeline.render(PAGE, proxy_host="localhost:8000")
            await pipeline.orchestrator.drain()

            async def lookup(segments):
                return await lookup_translations(store, pipeline.options, {"segments": segments})

            report = await DeferredPoller(result.document, result.pending, lookup, sleep=no_wait).run()
            return result, report

        result, report = asyncio.run(run())

        assert result.stats.pending == 4
        assert "window.__LINGOPROXY_DEFERRED__=" in result.html
        assert 'data-lingoproxy-pending="' in result.html
        assert 'href="/about"' in result.html
        assert len(store.segments) == 4
        assert store.pathnames[(1, "es", "/about")] == "/es/about"

        settled = result.document.serialize()
        assert len(report.applied) == 4
        assert report.polls == 1
        assert "<title>ES Shop</title>" in settled
        assert "ES Welcome</h1>" in settled
        assert "ES Buy <b>now</b> for 20 dollars</p>" in settled
        assert "<!--lingoproxy:" not in settled
        assert result.document.select(".lingoproxy-skeleton") == []

    def test_warm_cache_is_not_deferred(self):
        provider = PrefixProvider()
        pipeline, _ = make_pipeline(provider, deferred=True)

        async def run():
            await pipeline.render(PAGE)
            await pipeline.orchestrator.drain()
            return await pipeline.render(PAGE)

        result = asyncio.run(run())

        assert result.pending == []
        assert "__LINGOPROXY_DEFERRED__" not in result.html
        assert "<h1>ES Welcome</h1>" in result.html
