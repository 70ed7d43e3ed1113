"""Tests for the placeholder codec."""

import pytest

from lingoproxy.errors import PlaceholderViolation
from lingoproxy.placeholders import (
    TokenRole,
    apply_patterns,
    apply_skip_words,
    ensure_valid,
    html_to_placeholders,
    placeholders_to_html,
    protect,
    restore,
    restore_patterns,
    restore_skip_words,
    strip_tokens,
    tokenize,
    validate,
)


class TestTokenize:
    def test_recognises_paired_and_standalone_tokens(self):
        tokens = tokenize("[HB1]Save[/HB1] [N1] now [HV2]")

        assert [(token.role, token.ident) for token in tokens] == [
            (TokenRole.OPEN, "HB1"),
            (TokenRole.CLOSE, "HB1"),
            (TokenRole.STANDALONE, "N1"),
            (TokenRole.STANDALONE, "HV2"),
        ]

    def test_bracketed_content_is_not_a_token(self):
        """Field labels like [required] and unknown kinds stay as text."""
        assert tokenize("Email [required] [A] [XY1] [/N1]") == []

    def test_strip_tokens(self):
        assert strip_tokens("[HB1]Hi[/HB1] [N1]x") == "Hi x"


class TestInlineHtml:
    def test_paired_tags_become_numbered_tokens(self):
        text, replacements = html_to_placeholders("Hello <b>world</b> and <i>you</i>")

        assert text == "Hello [HB1]world[/HB1] and [HE1]you[/HE1]"
        assert [replacement.tag_name for replacement in replacements] == ["b", "i"]
        assert all(replacement.paired for replacement in replacements)

    def test_round_trip_restores_attributes(self):
        markup = 'Read <a href="/terms" class="x">the <strong>terms</strong></a> first'
        text, replacements = html_to_placeholders(markup)

        assert text == "Read [HA1]the [HB1]terms[/HB1][/HA1] first"
        assert placeholders_to_html(text, replacements) == markup

    def test_void_and_empty_elements_are_standalone(self):
        text, replacements = html_to_placeholders('<i class="icon-cart"></i> Cart<br>now')

        assert text == "[HV1] Cart[HV2]now"
        assert replacements[0].open_tag == '<i class="icon-cart"></i>'
        assert not replacements[0].paired
        assert replacements[1].tag_name == "br"

    def test_counters_are_per_kind(self):
        text, _ = html_to_placeholders("<b>a</b> <span>b</span> <b>c</b>")
        assert text == "[HB1]a[/HB1] [HS1]b[/HS1] [HB2]c[/HB2]"

    def test_unknown_and_unmatched_tags_stay_raw(self):
        text, replacements = html_to_placeholders("a <custom>b</custom> <b>c")

        assert text == "a <custom>b</custom> <b>c"
        assert replacements == []

    def test_whitespace_is_collapsed_unless_preserved(self):
        markup = "  one\n\t<b>two</b>   three "

        assert html_to_placeholders(markup)[0] == "one [HB1]two[/HB1] three"
        assert html_to_placeholders("a\n  <b>b</b>", preserve_whitespace=True)[0] == "a\n  [HB1]b[/HB1]"

    def test_numeric_entities_are_decoded(self):
        assert html_to_placeholders("&#169; 2024")[0] == "© 2024"

    def test_translation_may_move_tokens(self):
        text, replacements = html_to_placeholders("The <b>red</b> car")
        assert text == "The [HB1]red[/HB1] car"

        assert placeholders_to_html("El coche [HB1]rojo[/HB1]", replacements) == "El coche <b>rojo</b>"


class TestSkipWords:
    def test_whole_words_case_insensitive(self):
        text, replacements = apply_skip_words("Sell on eBay. EBAY rocks, eBayer", ["eBay"])

        assert text == "Sell on [S1]. [S2] rocks, eBayer"
        assert [replacement.original for replacement in replacements] == ["eBay", "EBAY"]

    def test_numbering_continues_across_words(self):
        text, replacements = apply_skip_words("Acme and Globex and Acme", ["Acme", "Globex"])

        assert text == "[S1] and [S3] and [S2]"
        assert restore_skip_words("[S2] y [S3] y [S1]", replacements) == "Acme y Globex y Acme"

    def test_protect_and_restore_in_reverse_order(self):
        protected = protect("Buy on <b>eBay</b> today", ["eBay"], html=True)

        assert protected.text == "Buy on [HB1][S1][/HB1] today"
        assert restore("Compra en [HB1][S1][/HB1] hoy", protected.tags, protected.skips) == (
            "Compra en <b>eBay</b> hoy"
        )

    def test_no_skip_words_is_identity(self):
        assert apply_skip_words("anything", []) == ("anything", [])


class TestPatterns:
    def test_email_before_numbers(self):
        patternized = apply_patterns("Write to a1@shop.com about order 1,250.50 or 3")

        assert patternized.normalized == "Write to [P1] about order [N1] or [N2]"
        assert restore_patterns("Escribe a [P1] sobre el pedido [N1] o [N2]", patternized.replacements) == (
            "Escribe a a1@shop.com sobre el pedido 1,250.50 o 3"
        )

    def test_token_digits_are_untouched(self):
        patternized = apply_patterns("[HB1]Only 3[/HB1] left")

        assert patternized.normalized == "[HB1]Only [N1][/HB1] left"

    def test_upper_case_source_is_restored_upper_case(self):
        patternized = apply_patterns("SAVE 20% TODAY")

        assert patternized.is_upper_case
        restored = restore_patterns("ahorra [N1]% hoy", patternized.replacements, patternized.is_upper_case)
        assert restored == "AHORRA 20% HOY"

    def test_patterns_can_be_disabled(self):
        patternized = apply_patterns("Call 555", patterns=())
        assert patternized.normalized == "Call 555"
        assert patternized.replacements == []


class TestValidate:
    def test_valid_translation(self):
        assert validate("[HB1]Hi[/HB1] [N1]", "[N1] [HB1]Hola[/HB1]").valid

    def test_missing_and_extra_tokens(self):
        result = validate("Hi [HB1]x[/HB1] [N1]", "Hola [HB1]x[/HB1] [N2]")

        assert result.missing == ["[N1]"]
        assert result.extra == ["[N2]"]
        assert not result.valid

    def test_unclosed_tag(self):
        result = validate("[HB1]x[/HB1]", "[HB1]x")

        assert result.unmatched_open == ["[HB1]"]
        assert result.missing == ["[/HB1]"]

    def test_stray_closing_tag(self):
        result = validate("[HB1]x[/HB1]", "x[/HB1] [HB1]")
        assert result.unmatched_close == ["[/HB1]"]

    def test_crossed_nesting(self):
        result = validate("[HB1][HE1]x[/HE1][/HB1]", "[HB1][HE1]x[/HB1][/HE1]")

        assert result.nesting_errors
        assert not result.missing and not result.extra

    def test_ensure_valid_raises(self):
        with pytest.raises(PlaceholderViolation) as excinfo:
            ensure_valid("[N1] items", "items")
        assert excinfo.value.result.missing == ["[N1]"]
