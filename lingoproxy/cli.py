"""Command line interface for lingoproxy."""

from __future__ import annotations

import argparse
import asyncio
import logging
import pathlib
import re
import sys
import time
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from .configuration import get_settings, options_from_settings, provider_settings, split_list
from .errors import LingoProxyError, TranslationError, TranslationProviderConfigurationError
from .lookup import lookup_translations
from .pipeline import PagePipeline
from .providers import build_provider
from .reconcile import DeferredPoller
from .store import MemoryTranslationStore
from .structures import ProxyOptions, RenderStats
from .translator import TranslationOrchestrator


@dataclass
class FileSummary:
    """Report for one ``translate-file`` run."""

    input_path: pathlib.Path
    output_path: pathlib.Path
    provider_name: str
    model: str | None
    target_language: str
    stats: RenderStats
    elapsed_seconds: float
    settled: int = 0
    error_messages: List[str] = field(default_factory=list)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lingoproxy",
        description="Translating reverse proxy for HTML sites.",
    )
    parser.add_argument(
        "--debug-provider",
        action="store_true",
        help="Log complete provider requests and responses for troubleshooting.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show detailed progress information.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the translating proxy.")
    serve.add_argument("--origin", help="Origin site, e.g. https://example.com.")
    serve.add_argument("-t", "--target-language", help="Destination language code.")
    serve.add_argument("-p", "--provider", help="Translation provider identifier.")
    serve.add_argument("-m", "--model", help="Provider-specific model identifier.")
    serve.add_argument("--host", default="127.0.0.1", help="Interface to bind (default: 127.0.0.1).")
    serve.add_argument("--port", type=int, default=8000, help="Port to bind (default: 8000).")

    translate = subparsers.add_parser("translate-file", help="Translate a local HTML file.")
    translate.add_argument("input_file", help="Path to the .html file to translate.")
    translate.add_argument("-t", "--target-language", help="Destination language code.")
    translate.add_argument("-s", "--source-language", help="Source language code.")
    translate.add_argument("-o", "--output", help="Output file path. Defaults to appending the language code.")
    translate.add_argument("-p", "--provider", help="Translation provider identifier.")
    translate.add_argument("-m", "--model", help="Provider-specific model identifier.")
    translate.add_argument("--origin", help="Origin the page was fetched from; enables link rewriting.")
    translate.add_argument("--skip-word", action="append", default=None, help="Brand term to keep (repeatable).")
    translate.add_argument(
        "--deferred",
        action="store_true",
        help="Render with pending markers and finish translations in the background.",
    )
    translate.add_argument(
        "--settle",
        action="store_true",
        help="With --deferred, wait for background work and apply it as a browser would.",
    )
    translate.add_argument("-f", "--force", action="store_true", help="Allow overwriting the output file.")
    return parser


def sanitise_language_for_filename(language: str) -> str:
    """Generate a filesystem-friendly suffix from a language descriptor."""

    collapsed = re.sub(r"\s+", "-", language.strip())
    ascii_only = collapsed.encode("ascii", "ignore").decode("ascii")
    cleaned = re.sub(r"[^A-Za-z0-9\-]+", "", ascii_only)
    return cleaned or "translated"


def derive_output_path(input_path: pathlib.Path, language: str) -> pathlib.Path:
    addition = sanitise_language_for_filename(language)
    return input_path.with_name(f"{input_path.stem}_{addition}{input_path.suffix}")


async def _settle(pipeline: PagePipeline, result, options: ProxyOptions) -> int:
    await pipeline.orchestrator.drain()
    if not result.pending or result.document is None:
        return 0

    async def lookup(segments):
        return await lookup_translations(pipeline.store, options, {"segments": segments})

    async def no_wait(_seconds: float) -> None:
        return None

    poller = DeferredPoller(result.document, result.pending, lookup, sleep=no_wait)
    report = await poller.run()
    result.html = result.document.serialize()
    return len(report.applied)


async def _translate_file(
    input_path: pathlib.Path,
    *,
    options: ProxyOptions,
    provider_name: str,
    model: str | None,
    settings: dict,
    provider_debug: bool,
    settle: bool,
) -> tuple[str, RenderStats, int]:
    provider = build_provider(provider_name, model=model, settings=settings, debug=provider_debug)
    store = MemoryTranslationStore()
    orchestrator = TranslationOrchestrator(provider, options=options, store=store)
    pipeline = PagePipeline(orchestrator, store, options=options)
    html = input_path.read_text(encoding="utf-8")
    result = await pipeline.render(html, pathname="/" + input_path.name, proxy_host="")
    settled = await _settle(pipeline, result, options) if settle else 0
    if not settle:
        await orchestrator.drain()
    return result.html, result.stats, settled


def execute_translation(
    *,
    input_file: str,
    output_file: str | None,
    options: ProxyOptions,
    provider: str,
    model: str | None,
    settings: dict,
    force_overwrite: bool,
    provider_debug: bool,
    settle: bool = False,
) -> tuple[int, FileSummary | None, str | None]:
    """Execute a file translation and return the exit code, summary, and message."""

    input_path = pathlib.Path(input_file).expanduser().resolve()
    output_path = (
        pathlib.Path(output_file).expanduser().resolve()
        if output_file
        else derive_output_path(input_path, options.target_lang)
    )
    if not input_path.exists():
        return 1, None, f"Input file not found: {input_path}"
    if output_path.exists() and not force_overwrite:
        return 1, None, f"Output file {output_path} exists. Use --force to overwrite."

    started = time.perf_counter()
    try:
        html, stats, settled = asyncio.run(
            _translate_file(
                input_path,
                options=options,
                provider_name=provider,
                model=model,
                settings=settings,
                provider_debug=provider_debug,
                settle=settle,
            )
        )
    except TranslationProviderConfigurationError as exc:
        return 1, None, str(exc)
    except TranslationError as exc:
        return 1, None, f"Translation failed: {exc}"
    except LingoProxyError as exc:
        return 1, None, str(exc)
    except KeyboardInterrupt:
        return 2, None, "Translation interrupted by user."

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(html, encoding="utf-8")
    summary = FileSummary(
        input_path=input_path,
        output_path=output_path,
        provider_name=provider,
        model=model,
        target_language=options.target_lang,
        stats=stats,
        elapsed_seconds=time.perf_counter() - started,
        settled=settled,
        error_messages=list(stats.error_messages),
    )
    return 0, summary, None


def print_summary(summary: FileSummary) -> None:
    """Output a friendly report once processing completes."""

    stats = summary.stats
    print("\nTranslation complete.")
    print(f"  Input file:      {summary.input_path}")
    print(f"  Output file:     {summary.output_path}")
    print(
        "  Segments:        "
        f"{stats.extracted} extracted / {stats.cached} cached / "
        f"{stats.translated} translated / {stats.pending} pending"
    )
    print(f"  Requests:        {stats.unique} unique strings in {stats.batches} batches")
    if stats.total_paths:
        print(f"  Pathnames:       {stats.total_paths} ({stats.new_paths} new)")
    if summary.settled:
        print(f"  Settled:         {summary.settled} pending segments applied")
    print(
        f"  Provider:        {summary.provider_name}"
        + (f" ({summary.model})" if summary.model else "")
    )
    print(f"  Target language: {summary.target_language}")
    if stats.usage.prompt_tokens or stats.usage.completion_tokens:
        print(
            f"  Tokens:          {stats.usage.prompt_tokens} prompt / "
            f"{stats.usage.completion_tokens} completion"
        )
    print(f"  Elapsed time:    {summary.elapsed_seconds:.2f} seconds")
    if summary.error_messages:
        print("  Notes:")
        for message in summary.error_messages:
            print(f"    - {message}")


def _serve(args, settings, options: ProxyOptions, provider_debug: bool) -> int:
    import uvicorn

    from .server import create_app

    if not options.origin:
        print("An origin is required: pass --origin or set LINGOPROXY_ORIGIN.")
        return 1
    provider = build_provider(
        args.provider or settings.LLM_PROVIDER,
        model=args.model or settings.LINGOPROXY_MODEL,
        settings=provider_settings(settings),
        debug=provider_debug,
    )
    app = create_app(provider, options=options)
    uvicorn.run(app, host=args.host, port=args.port)
    return 0


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = get_settings()
    except TranslationProviderConfigurationError as exc:
        print(exc)
        return 1
    provider_debug = bool(args.debug_provider or settings.LINGOPROXY_PROVIDER_DEBUG)

    try:
        if args.command == "serve":
            options = options_from_settings(settings, origin=args.origin, target_lang=args.target_language)
            return _serve(args, settings, options, provider_debug)

        skip_words = tuple(args.skip_word) if args.skip_word else split_list(settings.LINGOPROXY_SKIP_WORDS)
        options = options_from_settings(
            settings,
            origin=args.origin,
            target_lang=args.target_language,
            source_lang=args.source_language,
            skip_words=skip_words,
            deferred=bool(args.deferred),
        )
    except TranslationProviderConfigurationError as exc:
        print(exc)
        return 1

    exit_code, summary, message = execute_translation(
        input_file=args.input_file,
        output_file=args.output,
        options=options,
        provider=args.provider or settings.LLM_PROVIDER,
        model=args.model or settings.LINGOPROXY_MODEL,
        settings=provider_settings(settings),
        force_overwrite=args.force,
        provider_debug=provider_debug,
        settle=bool(args.settle),
    )

    if message:
        print(message)
    if summary:
        print_summary(summary)
    return exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
