"""Prepper-backed configuration loader for lingoproxy."""

from __future__ import annotations

import os
from dataclasses import replace
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Mapping, Sequence

from dotenv import dotenv_values
from prepper import (
    ConfigNotFound,
    Field,
    IoError,
    SchemaError,
    SchemaModel,
    ValidationError,
    model_validator,
)
from prepper.config import ConfigInstance
from prepper.loaders import _parse_file, _path_to_source, discover_file_paths
from prepper.merge import merge_layer
from prepper.provenance import ProvenanceRecorder

from .errors import TranslationProviderConfigurationError
from .prompts import STYLES
from .structures import ProxyOptions

APP_NAME = "lingoproxy"

PROVIDER_KEYS = (
    "OPENAI_API_KEY",
    "OPENAI_BASE_URL",
    "OPENROUTER_API_KEY",
    "AZURE_OPENAI_API_KEY",
    "AZURE_OPENAI_ENDPOINT",
    "AZURE_OPENAI_API_VERSION",
    "AZURE_OPENAI_DEPLOYMENT_NAME",
)


class LingoProxyConfig(SchemaModel):
    """Settings recognised in YAML files, .env and the process environment."""

    LLM_PROVIDER: Literal["openai", "openrouter", "azure_openai", "echo"] = Field(
        default="openai",
        description="Backend used to translate segments and pathnames.",
    )
    OPENAI_API_KEY: str | None = Field(default=None, secret=True)
    OPENAI_BASE_URL: str | None = Field(default=None)
    OPENROUTER_API_KEY: str | None = Field(default=None, secret=True)
    AZURE_OPENAI_API_KEY: str | None = Field(default=None, secret=True)
    AZURE_OPENAI_ENDPOINT: str | None = Field(default=None)
    AZURE_OPENAI_API_VERSION: str | None = Field(default=None)
    AZURE_OPENAI_DEPLOYMENT_NAME: str | None = Field(default=None)
    LINGOPROXY_MODEL: str | None = Field(default=None)
    LINGOPROXY_ORIGIN: str | None = Field(default=None, description="Origin site, e.g. https://example.com")
    LINGOPROXY_SITE_ID: int = Field(default=1)
    LINGOPROXY_SOURCE_LANG: str = Field(default="en")
    LINGOPROXY_TARGET_LANG: str = Field(default="es")
    LINGOPROXY_STYLE: str = Field(default="balanced")
    LINGOPROXY_SKIP_WORDS: str | None = Field(default=None, description="Comma separated brand terms.")
    LINGOPROXY_SKIP_SELECTORS: str | None = Field(default=None, description="Comma separated CSS selectors.")
    LINGOPROXY_SKIP_PATHS: str | None = Field(default=None, description="Comma separated; prefix re: for regex.")
    LINGOPROXY_TRANSLATE_PATHS: bool = Field(default=True)
    LINGOPROXY_DEFERRED: bool = Field(default=True)
    LINGOPROXY_STRICT: bool = Field(default=False)
    LINGOPROXY_MAX_ITEMS: int = Field(default=128)
    LINGOPROXY_MAX_CHARS: int = Field(default=30000)
    LINGOPROXY_TRANSLATION_TIMEOUT: float = Field(default=10.0)
    LINGOPROXY_FETCH_TIMEOUT: float = Field(default=5.0)
    LINGOPROXY_PROVIDER_DEBUG: bool = Field(default=False)

    @model_validator(mode="before")
    def _normalise_provider(data: Any) -> Any:
        if isinstance(data, dict):
            raw_value = data.get("LLM_PROVIDER")
            if isinstance(raw_value, str):
                normalized = raw_value.strip().lower().replace("-", "_")
                synonyms = {
                    "azure_open_ai": "azure_openai",
                    "azureopenai": "azure_openai",
                    "open_router": "openrouter",
                }
                normalized = synonyms.get(normalized, normalized)
                if normalized not in {"openai", "openrouter", "azure_openai", "echo"}:
                    normalized = "openai"
                data["LLM_PROVIDER"] = normalized
            style = data.get("LINGOPROXY_STYLE")
            if isinstance(style, str) and style.strip().lower() not in STYLES:
                data["LINGOPROXY_STYLE"] = "balanced"
        return data


@lru_cache(maxsize=1)
def _load_config_instance(app_dir: Path | None = None) -> ConfigInstance:
    """Resolve, validate and cache the configuration for ``app_dir``."""

    try:
        layers = _ConfigLayers(app_dir or Path.cwd())
        layers.add_yaml_files()
        layers.add_dotenv()
        layers.add_process_env()
        if not layers.values:
            raise ConfigNotFound("nothing to load")

        model = LingoProxyConfig.validate(layers.values, provenance=layers.provenance)
        _check_provider_credentials(model)
        return ConfigInstance(
            model=model,
            provenance=layers.provenance,
            env_prefix=None,
            schema_cls=LingoProxyConfig,
        )
    except ConfigNotFound as exc:
        raise TranslationProviderConfigurationError(
            "No configuration sources were found. Set LINGOPROXY_* variables in the "
            "environment or a .env file, or add a lingoproxy YAML config."
        ) from exc
    except (IoError, SchemaError) as exc:
        raise TranslationProviderConfigurationError(f"Configuration could not be loaded: {exc}") from exc
    except ValidationError as exc:
        raise TranslationProviderConfigurationError(_describe_issues(exc.to_dict())) from exc


class _ConfigLayers:
    """Accumulates YAML, .env and process values; later layers override earlier ones."""

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = base_dir
        self.provenance = ProvenanceRecorder()
        self.values: dict[str, Any] = {}
        self._known = set(LingoProxyConfig.__field_infos__)

    def add_yaml_files(self) -> None:
        for path, label in discover_file_paths(APP_NAME, "yaml", app_dir=self.base_dir, extra_paths=None):
            document = _parse_file(path, "yaml")
            if not isinstance(document, Mapping):
                raise IoError(f"{path} must contain a mapping of settings.")
            merge_layer(
                self.values,
                document,
                provenance=self.provenance,
                source=_path_to_source(label, "yaml", path),
                layer="file",
            )

    def add_dotenv(self) -> None:
        path = self.base_dir / ".env"
        if path.exists():
            self._add_env(dotenv_values(path), ".env")

    def add_process_env(self) -> None:
        self._add_env(os.environ, "process")

    def _add_env(self, source: Mapping[str, str | None], origin: str) -> None:
        for key in sorted(self._known.intersection(source)):
            value = source[key]
            if value is None:
                continue
            merge_layer(
                self.values,
                {key: value},
                provenance=self.provenance,
                source=f"env:{origin}:{key}",
                layer="env",
            )


_REQUIRED_CREDENTIALS = {
    "openai": ("OPENAI_API_KEY",),
    "openrouter": ("OPENROUTER_API_KEY",),
    "azure_openai": (
        "AZURE_OPENAI_API_KEY",
        "AZURE_OPENAI_ENDPOINT",
        "AZURE_OPENAI_API_VERSION",
        "AZURE_OPENAI_DEPLOYMENT_NAME",
    ),
}


def _check_provider_credentials(settings: LingoProxyConfig) -> None:
    problems: list[str] = []
    provider = settings.LLM_PROVIDER
    missing = [key for key in _REQUIRED_CREDENTIALS.get(provider, ()) if not getattr(settings, key)]
    if missing:
        problems.append(f"LLM_PROVIDER '{provider}' needs {', '.join(missing)}.")
    if settings.LINGOPROXY_MAX_ITEMS < 1 or settings.LINGOPROXY_MAX_CHARS < 1:
        problems.append("LINGOPROXY_MAX_ITEMS and LINGOPROXY_MAX_CHARS must be positive.")
    if problems:
        raise TranslationProviderConfigurationError(
            "Invalid lingoproxy configuration:\n" + "\n".join(f"- {problem}" for problem in problems)
        )


def _describe_issues(entries: Sequence[dict[str, Any]]) -> str:
    lines = []
    for entry in entries:
        path = entry.get("path") or []
        if isinstance(path, (list, tuple)):
            path = ".".join(str(part) for part in path if part not in (None, ""))
        message = entry.get("message") or entry.get("msg") or "Invalid value"
        line = f"- {path}: {message}" if path else f"- {message}"
        if entry.get("source"):
            line += f" (from {entry['source']})"
        lines.append(line)
    return "Invalid lingoproxy configuration:\n" + "\n".join(lines)


def get_config(app_dir: Path | None = None) -> ConfigInstance:
    """Return the immutable configuration instance."""

    return _load_config_instance(app_dir=app_dir)


def get_settings(app_dir: Path | None = None) -> LingoProxyConfig:
    """Return the validated schema model for typed access."""

    return get_config(app_dir=app_dir).model()


def split_list(value: str | None) -> tuple[str, ...]:
    """Split a comma separated setting, dropping blanks."""

    if not value:
        return ()
    return tuple(part.strip() for part in value.split(",") if part.strip())


def provider_settings(settings: LingoProxyConfig) -> dict[str, str]:
    """Credentials handed to :func:`lingoproxy.providers.build_provider`."""

    values = {key: getattr(settings, key, None) for key in PROVIDER_KEYS}
    return {key: str(value) for key, value in values.items() if value}


def options_from_settings(settings: LingoProxyConfig, **overrides: Any) -> ProxyOptions:
    """Build runtime options; keyword overrides win over configured values."""

    options = ProxyOptions(
        site_id=settings.LINGOPROXY_SITE_ID,
        origin=settings.LINGOPROXY_ORIGIN or "",
        source_lang=settings.LINGOPROXY_SOURCE_LANG,
        target_lang=settings.LINGOPROXY_TARGET_LANG,
        style=settings.LINGOPROXY_STYLE.strip().lower(),
        skip_words=split_list(settings.LINGOPROXY_SKIP_WORDS),
        skip_selectors=split_list(settings.LINGOPROXY_SKIP_SELECTORS),
        skip_paths=split_list(settings.LINGOPROXY_SKIP_PATHS),
        translate_paths=settings.LINGOPROXY_TRANSLATE_PATHS,
        deferred=settings.LINGOPROXY_DEFERRED,
        strict=settings.LINGOPROXY_STRICT,
        max_items=settings.LINGOPROXY_MAX_ITEMS,
        max_chars=settings.LINGOPROXY_MAX_CHARS,
        translation_timeout=settings.LINGOPROXY_TRANSLATION_TIMEOUT,
        fetch_timeout=settings.LINGOPROXY_FETCH_TIMEOUT,
    )
    overrides = {key: value for key, value in overrides.items() if value is not None}
    if not overrides:
        return options
    return replace(options, **overrides)
