"""
Unit tests for response-language detection.
"""

import pytest

from sopcoach.utils.language import detect_language, normalize_language


class TestDetectLanguage:
    """Test suite for detect_language."""

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("¿Cómo apago la prensa?", "es"),
            ("Hola, necesito ayuda con la seguridad", "es"),
            ("Bonjour, où sont les gants ?", "fr"),
            ("Danke, wo ist die Maschine?", "de"),
            ("Obrigado pela ajuda", "pt"),
            ("मशीन कैसे बंद करें", "hi"),
            ("如何关闭机器", "zh"),
        ],
    )
    def test_detects_markers(self, text, expected):
        assert detect_language(text) == expected

    def test_plain_english_is_undetected(self):
        assert detect_language("How do I lock out the machine?") is None

    def test_keywords_are_whole_words(self):
        assert detect_language("The merchant shipped the parts") is None


class TestNormalizeLanguage:
    """Test suite for normalize_language."""

    def test_region_tags(self):
        assert normalize_language("es-MX") == "es"
        assert normalize_language("pt_BR") == "pt"

    def test_two_letter_codes_pass_through(self):
        assert normalize_language("FR") == "fr"

    def test_defaults_to_english(self):
        assert normalize_language(None) == "en"
        assert normalize_language("   ") == "en"
        assert normalize_language("klingon") == "en"
