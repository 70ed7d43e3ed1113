"""LLM backends that translate batches of segments and pathnames."""

from __future__ import annotations

import json
import os
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Sequence

from openai import AsyncAzureOpenAI, AsyncOpenAI

from .errors import TranslationError, TranslationProviderConfigurationError
from .prompts import prompt_for
from .structures import TokenUsage, TranslationItem

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


@dataclass
class ProviderResult:
    """Translations in input order plus what they cost."""

    translations: List[str]
    usage: TokenUsage = field(default_factory=TokenUsage)
    api_calls: int = 0


class TranslationProvider(ABC):
    """Translates a batch of items, keeping their order."""

    name = "abstract"

    @abstractmethod
    async def translate(
        self,
        items: Sequence[TranslationItem],
        *,
        source_language: str | None,
        target_language: str,
        style: str = "balanced",
    ) -> ProviderResult:
        """Translate ``items`` and return their translations in the same order."""


class EchoTranslationProvider(TranslationProvider):
    """Returns every item unchanged; used offline and in tests."""

    name = "echo"

    async def translate(
        self,
        items: Sequence[TranslationItem],
        *,
        source_language: str | None,
        target_language: str,
        style: str = "balanced",
    ) -> ProviderResult:
        return ProviderResult(translations=[item.text for item in items])


class OpenAITranslationProvider(TranslationProvider):
    """Translation provider that uses OpenAI models through the Responses API."""

    name = "openai"
    DEFAULT_MODEL = "gpt-5-mini"

    def __init__(
        self,
        *,
        provider_kind: str = "openai",
        model: str | None = None,
        settings: Mapping[str, Any] | None = None,
        debug: bool = False,
    ) -> None:
        self.debug = debug
        self.settings = dict(settings or {})
        self.provider_kind = provider_kind
        self._client, default_model = self._build_client()
        self.model = model or default_model

    def _setting(self, key: str) -> str | None:
        value = self.settings.get(key)
        if value:
            return str(value)
        return os.getenv(key)

    def _require(self, *keys: str) -> list[str]:
        values = [self._setting(key) for key in keys]
        missing = [key for key, value in zip(keys, values) if not value]
        if missing:
            raise TranslationProviderConfigurationError(
                f"{self.provider_kind} provider is not configured; set {', '.join(missing)} "
                "or choose a different provider."
            )
        return values  # type: ignore[return-value]

    def _build_client(self) -> tuple[Any, str]:
        if self.provider_kind == "azure_openai":
            api_key, endpoint, api_version, deployment = self._require(
                "AZURE_OPENAI_API_KEY",
                "AZURE_OPENAI_ENDPOINT",
                "AZURE_OPENAI_API_VERSION",
                "AZURE_OPENAI_DEPLOYMENT_NAME",
            )
            client = AsyncAzureOpenAI(api_key=api_key, api_version=api_version, azure_endpoint=endpoint)
            return client, deployment
        if self.provider_kind == "openrouter":
            (api_key,) = self._require("OPENROUTER_API_KEY")
            client = AsyncOpenAI(
                api_key=api_key,
                base_url=OPENROUTER_BASE_URL,
                default_headers={"X-Title": "lingoproxy"},
            )
            return client, ChatCompletionsTranslationProvider.OPENROUTER_MODEL
        (api_key,) = self._require("OPENAI_API_KEY")
        return AsyncOpenAI(api_key=api_key, base_url=self._setting("OPENAI_BASE_URL")), self.DEFAULT_MODEL

    async def translate(
        self,
        items: Sequence[TranslationItem],
        *,
        source_language: str | None,
        target_language: str,
        style: str = "balanced",
    ) -> ProviderResult:
        result = ProviderResult(translations=[])
        if not items:
            return result

        by_position: Dict[int, str] = {}
        # One request per item type; segments and pathnames have separate prompts.
        for item_type in dict.fromkeys(item.type for item in items):
            positions = [index for index, item in enumerate(items) if item.type == item_type]
            system_prompt = prompt_for(item_type, style)
            request = {
                "target_language": target_language,
                "source_language": source_language,
                "segments": [{"id": f"t{index}", "text": items[index].text} for index in positions],
            }
            self._log_debug("provider.request.system_prompt", system_prompt)
            self._log_debug("provider.request.payload", request)

            text, usage = await self._invoke_model(system_prompt, json.dumps(request, ensure_ascii=False))
            result.usage = result.usage + usage
            result.api_calls += 1
            returned = _translations_by_id(_parse_translation_list(text))
            self._log_debug("provider.response.items", returned)

            for index in positions:
                if f"t{index}" not in returned:
                    raise TranslationError(f"Translation provider response missing item t{index}.")
                by_position[index] = returned[f"t{index}"]

        result.translations = [by_position[index] for index in range(len(items))]
        return result

    async def _invoke_model(self, system_prompt: str, user_text: str) -> tuple[str, TokenUsage]:
        """Send one Responses API request; return the output text and its token usage."""

        try:
            response = await self._client.responses.create(
                model=self.model,
                input=[
                    {"role": "system", "content": [{"type": "input_text", "text": system_prompt}]},
                    {"role": "user", "content": [{"type": "input_text", "text": user_text}]},
                ],
            )
        except Exception as exc:  # pragma: no cover - network call
            raise TranslationError(f"Translation service temporarily unavailable: {exc}") from exc
        if self.debug:
            self._log_debug("provider.response.raw", _response_as_data(response))
        usage = getattr(response, "usage", None)
        return _response_text(response), TokenUsage(
            prompt_tokens=getattr(usage, "input_tokens", 0) or 0,
            completion_tokens=getattr(usage, "output_tokens", 0) or 0,
            cost=float(getattr(usage, "cost", 0) or 0),
        )

    def _log_debug(self, label: str, payload: Any) -> None:
        if not self.debug:
            return
        if isinstance(payload, (dict, list)):
            payload = json.dumps(payload, ensure_ascii=False, indent=2, default=str)
        print(f"[lingoproxy][provider-debug] {label}:\n{payload}", file=sys.stderr)


def _response_as_data(response: Any) -> Any:
    """SDK response objects as plain data for debug output."""

    dump = getattr(response, "model_dump", None)
    if callable(dump):
        try:
            return dump()
        except (TypeError, ValueError):
            pass
    return str(response)


def _response_text(response: Any) -> str:
    """First text payload of a Responses API result."""

    if getattr(response, "output_text", None):
        return str(response.output_text)
    for output in getattr(response, "output", None) or []:
        for part in getattr(output, "content", None) or []:
            if getattr(part, "text", None):
                return str(part.text)
    raise TranslationError("Translation provider response empty or unrecognised.")


def _unfence(text: str) -> str:
    """Drop a surrounding markdown code fence, language hint included."""

    text = text.strip()
    if not text.startswith("```") or "\n" not in text:
        return text
    body = text.split("\n", 1)[1]
    if "```" in body:
        body = body[: body.rindex("```")]
    return body.strip()


def _parse_translation_list(text: str) -> list[Any]:
    """Decode ``{"translations": [...]}`` or a bare list from model output."""

    try:
        payload = json.loads(_unfence(text))
    except json.JSONDecodeError as exc:
        raise TranslationError(f"Translation provider returned invalid JSON: {exc}") from exc
    if isinstance(payload, dict):
        payload = payload.get("translations")
    if not isinstance(payload, list):
        raise TranslationError("Translation provider response has no translations list.")
    return payload


def _translations_by_id(entries: Sequence[Any]) -> Dict[str, str]:
    by_id: Dict[str, str] = {}
    for entry in entries:
        if not isinstance(entry, dict):
            raise TranslationError("Translation provider response malformed: expected objects.")
        item_id, translated = entry.get("id"), entry.get("translated")
        if not isinstance(item_id, str) or not isinstance(translated, str):
            raise TranslationError("Translation provider response malformed: missing id or translated.")
        by_id[item_id] = translated
    return by_id


class ChatCompletionsTranslationProvider(OpenAITranslationProvider):
    """Same batching over the Chat Completions API, for OpenRouter and older deployments."""

    name = "chat-completions"
    OPENROUTER_MODEL = "anthropic/claude-haiku-4.5"

    async def _invoke_model(self, system_prompt: str, user_text: str) -> tuple[str, TokenUsage]:
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                temperature=0,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_text},
                ],
            )
        except Exception as exc:  # pragma: no cover - network call
            raise TranslationError(f"Translation service temporarily unavailable: {exc}") from exc
        if self.debug:
            self._log_debug("provider.response.raw", _response_as_data(response))

        contents = [
            choice.message.content
            for choice in getattr(response, "choices", None) or []
            if getattr(getattr(choice, "message", None), "content", None)
        ]
        if not contents:
            raise TranslationError("Translation provider response empty or unrecognised.")

        usage = getattr(response, "usage", None)
        return str(contents[0]), TokenUsage(
            prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
            cost=float(getattr(usage, "cost", 0) or 0),
        )


_PROVIDER_ALIASES = {
    "openai": ("openai", OpenAITranslationProvider),
    "gpt": ("openai", OpenAITranslationProvider),
    "default": ("openai", OpenAITranslationProvider),
    "azure_openai": ("azure_openai", OpenAITranslationProvider),
    "azure_open_ai": ("azure_openai", OpenAITranslationProvider),
    "azure": ("azure_openai", OpenAITranslationProvider),
    "openrouter": ("openrouter", ChatCompletionsTranslationProvider),
    "open_router": ("openrouter", ChatCompletionsTranslationProvider),
    "chat": ("openai", ChatCompletionsTranslationProvider),
    "chat_completions": ("openai", ChatCompletionsTranslationProvider),
}


def build_provider(
    name: str | None,
    *,
    model: str | None = None,
    settings: Mapping[str, Any] | None = None,
    debug: bool = False,
) -> TranslationProvider:
    """Create the provider registered under ``name`` (``openai`` when empty)."""

    key = (name or "openai").strip().lower().replace("-", "_")
    if key in {"echo", "noop", "mock"}:
        return EchoTranslationProvider()
    if key not in _PROVIDER_ALIASES:
        raise TranslationProviderConfigurationError(f"Unknown translation provider '{name}'.")
    kind, provider_cls = _PROVIDER_ALIASES[key]
    return provider_cls(provider_kind=kind, model=model, settings=settings, debug=debug)
