"""Tests for the command line helpers."""

import pathlib

from lingoproxy.cli import build_parser, derive_output_path, execute_translation, sanitise_language_for_filename
from lingoproxy.structures import ProxyOptions

PAGE = "<html><head><title>Hello</title></head><body><h1>World</h1></body></html>"


def run(tmp_path, **overrides):
    source = tmp_path / "page.html"
    source.write_text(PAGE, encoding="utf-8")
    arguments = dict(
        input_file=str(source),
        output_file=None,
        options=ProxyOptions(target_lang="fr", deferred=False),
        provider="echo",
        model=None,
        settings={},
        force_overwrite=False,
        provider_debug=False,
    )
    arguments.update(overrides)
    return execute_translation(**arguments)


class TestFilenames:
    def test_sanitise_language(self):
        assert sanitise_language_for_filename("pt BR") == "pt-BR"
        assert sanitise_language_for_filename("日本語") == "translated"

    def test_derive_output_path(self):
        assert derive_output_path(pathlib.Path("/tmp/site/index.html"), "es") == pathlib.Path("/tmp/site/index_es.html")


class TestParser:
    def test_translate_file_arguments(self):
        args = build_parser().parse_args(
            ["translate-file", "in.html", "-t", "de", "--skip-word", "eBay", "--skip-word", "Acme", "--deferred", "--settle"]
        )

        assert args.command == "translate-file"
        assert args.target_language == "de"
        assert args.skip_word == ["eBay", "Acme"]
        assert args.deferred and args.settle

    def test_serve_defaults(self):
        args = build_parser().parse_args(["serve", "--origin", "https://example.com"])

        assert (args.host, args.port) == ("127.0.0.1", 8000)


class TestExecuteTranslation:
    def test_writes_translated_file(self, tmp_path):
        code, summary, message = run(tmp_path)

        assert code == 0
        assert message is None
        assert summary.output_path.name == "page_fr.html"
        assert summary.stats.extracted == 2
        output = summary.output_path.read_text(encoding="utf-8")
        assert 'lang="fr"' in output

    def test_refuses_to_overwrite(self, tmp_path):
        (tmp_path / "page_fr.html").write_text("keep", encoding="utf-8")

        code, summary, message = run(tmp_path)

        assert code == 1
        assert summary is None
        assert "--force" in message
        assert (tmp_path / "page_fr.html").read_text(encoding="utf-8") == "keep"

    def test_missing_input(self, tmp_path):
        code, _, message = run(tmp_path, input_file=str(tmp_path / "absent.html"))

        assert code == 1
        assert "not found" in message

    def test_unknown_provider(self, tmp_path):
        code, _, message = run(tmp_path, provider="carrier-pigeon")

        assert code == 1
        assert "Unknown translation provider" in message

    def test_deferred_render_settles(self, tmp_path):
        code, summary, _ = run(
            tmp_path,
            options=ProxyOptions(target_lang="fr", deferred=True),
            settle=True,
        )

        assert code == 0
        assert summary.settled == 2
        output = summary.output_path.read_text(encoding="utf-8")
        assert "<!--lingoproxy:" not in output
        assert "<h1>World</h1>" in output
