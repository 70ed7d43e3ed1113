"""Tests for configuration loading and option building."""

from types import SimpleNamespace

import pytest

from lingoproxy.configuration import (
    LingoProxyConfig,
    _load_config_instance,
    get_settings,
    options_from_settings,
    provider_settings,
    split_list,
)
from lingoproxy.errors import TranslationProviderConfigurationError


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for key in LingoProxyConfig.__field_infos__:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    _load_config_instance.cache_clear()
    yield tmp_path
    _load_config_instance.cache_clear()


def settings_stub(**values):
    defaults = dict(
        LINGOPROXY_SITE_ID=1,
        LINGOPROXY_ORIGIN="https://example.com",
        LINGOPROXY_SOURCE_LANG="en",
        LINGOPROXY_TARGET_LANG="de",
        LINGOPROXY_STYLE=" Natural ",
        LINGOPROXY_SKIP_WORDS="eBay, Acme,,",
        LINGOPROXY_SKIP_SELECTORS=None,
        LINGOPROXY_SKIP_PATHS="/api,re:^/admin",
        LINGOPROXY_TRANSLATE_PATHS=True,
        LINGOPROXY_DEFERRED=True,
        LINGOPROXY_STRICT=False,
        LINGOPROXY_MAX_ITEMS=64,
        LINGOPROXY_MAX_CHARS=1000,
        LINGOPROXY_TRANSLATION_TIMEOUT=10.0,
        LINGOPROXY_FETCH_TIMEOUT=5.0,
        OPENAI_API_KEY="sk-test",
        OPENAI_BASE_URL=None,
        OPENROUTER_API_KEY=None,
        AZURE_OPENAI_API_KEY=None,
        AZURE_OPENAI_ENDPOINT=None,
        AZURE_OPENAI_API_VERSION=None,
        AZURE_OPENAI_DEPLOYMENT_NAME=None,
    )
    defaults.update(values)
    return SimpleNamespace(**defaults)


class TestOptions:
    def test_split_list(self):
        assert split_list(" a, b ,,c ") == ("a", "b", "c")
        assert split_list(None) == ()

    def test_options_from_settings(self):
        options = options_from_settings(settings_stub())

        assert options.target_lang == "de"
        assert options.style == "natural"
        assert options.skip_words == ("eBay", "Acme")
        assert options.skip_paths == ("/api", "re:^/admin")
        assert options.max_items == 64
        assert options.origin_host == "example.com"

    def test_overrides_win_and_none_is_ignored(self):
        options = options_from_settings(settings_stub(), target_lang="fr", origin=None, deferred=False)

        assert options.target_lang == "fr"
        assert options.origin == "https://example.com"
        assert options.deferred is False

    def test_provider_settings_drop_empty_values(self):
        assert provider_settings(settings_stub()) == {"OPENAI_API_KEY": "sk-test"}


class TestLoading:
    def test_dotenv_file(self, clean_env):
        (clean_env / ".env").write_text(
            "LLM_PROVIDER=Echo\nLINGOPROXY_TARGET_LANG=fr\nLINGOPROXY_SKIP_WORDS=eBay\n",
            encoding="utf-8",
        )

        settings = get_settings(clean_env)

        assert settings.LLM_PROVIDER == "echo"
        assert settings.LINGOPROXY_TARGET_LANG == "fr"
        assert settings.LINGOPROXY_SKIP_WORDS == "eBay"

    def test_process_environment_wins_over_dotenv(self, clean_env, monkeypatch):
        (clean_env / ".env").write_text("LLM_PROVIDER=echo\nLINGOPROXY_TARGET_LANG=fr\n", encoding="utf-8")
        monkeypatch.setenv("LINGOPROXY_TARGET_LANG", "it")

        assert get_settings(clean_env).LINGOPROXY_TARGET_LANG == "it"

    def test_missing_openai_key(self, clean_env, monkeypatch):
        monkeypatch.setenv("LLM_PROVIDER", "openai")

        with pytest.raises(TranslationProviderConfigurationError, match="OPENAI_API_KEY"):
            get_settings(clean_env)

    def test_no_sources(self, clean_env):
        with pytest.raises(TranslationProviderConfigurationError, match="No configuration sources"):
            get_settings(clean_env)
