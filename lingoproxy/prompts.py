"""System prompts sent to the language model."""

from __future__ import annotations

STYLES = ("literal", "balanced", "natural")

_STYLE_GUIDANCE = {
    "literal": "Stay as close to the source wording as the target grammar allows.",
    "balanced": "Keep the meaning and tone; rephrase only where a literal rendering would read unnaturally.",
    "natural": "Write the way a native copywriter would, adapting idioms freely while keeping the meaning.",
}

_JSON_CONTRACT = (
    "Respond strictly with an object shaped as "
    '{"translations": [{"id": "...", "translated": "..."}]}, '
    "one entry per input id. "
    "Do not add commentary. Do not wrap the JSON in markdown code fences."
)


def segment_prompt(style: str = "balanced") -> str:
    """Prompt for page text, titles and attribute values."""

    guidance = _STYLE_GUIDANCE.get(style, _STYLE_GUIDANCE["balanced"])
    return (
        "You are a professional website translator. Return only JSON. "
        "Translate each text segment from the source language into the target language. "
        f"{guidance} "
        "Segments may contain placeholder tokens such as [N1], [P1], [S1], [HV1] "
        "or paired tokens such as [HB1]...[/HB1]. Copy every token exactly once, "
        "never translate or renumber it, keep paired tokens paired and properly nested, "
        "and keep each pair around the words it wrapped (their position may move to "
        "follow target word order). Bracketed text that is not such a token, like "
        "[required], is ordinary content. "
        + _JSON_CONTRACT
    )


def pathname_prompt() -> str:
    """Prompt for URL pathnames."""

    return (
        "You translate URL pathnames for a localised website. Return only JSON. "
        "Translate the human-readable words of each pathname into the target language. "
        "Keep every '/' separator, the leading '/', the segment count and order, and a "
        "trailing '/' only if the input had one. Copy placeholder tokens such as [N1] or "
        "[S1] unchanged. Leave numbers and technical words (api, id, oauth, json) alone. "
        "Use only ASCII letters, digits, '-', '.', '_', '~' and '/': join words with '-' "
        "and drop accents. Give login and signup routes distinct translations. "
        "If nothing is translatable, return the input unchanged. "
        + _JSON_CONTRACT
    )


def prompt_for(item_type: str, style: str = "balanced") -> str:
    if item_type == "pathname":
        return pathname_prompt()
    return segment_prompt(style)
