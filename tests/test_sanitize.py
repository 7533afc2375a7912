"""Text sanitization applied to every exported cell and PDF string."""

import unittest

from proofpack import ForbiddenCharactersError, assert_no_bad_chars, safe_text, sanitize_text
from proofpack.sanitize import find_bad_chars, is_noncharacter


class TestSanitizeText(unittest.TestCase):

    def test_none_and_empty(self):
        self.assertEqual(sanitize_text(None), "")
        self.assertEqual(sanitize_text(""), "")

    def test_non_string_values_are_stringified(self):
        self.assertEqual(sanitize_text(42), "42")

    def test_nfkc_normalization(self):
        """Compatibility forms fold to their plain equivalents."""
        self.assertEqual(sanitize_text("\uff21\uff22\uff23"), "ABC")
        self.assertEqual(sanitize_text("\ufb01re"), "fire")

    def test_zero_width_characters_removed(self):
        self.assertEqual(sanitize_text("Roof\u200b in\u200dspection\ufeff"), "Roof inspection")

    def test_typographic_dashes_and_quotes(self):
        self.assertEqual(sanitize_text("Fall \u2014 arrest"), "Fall - arrest")
        self.assertEqual(sanitize_text("\u201cHarness\u201d \u2018ok\u2019"), '"Harness" \'ok\'')

    def test_whitespace_controls_and_collapse(self):
        self.assertEqual(sanitize_text("  Ladder\tcheck\r\n\n  done  "), "Ladder check done")

    def test_line_separators(self):
        self.assertEqual(sanitize_text("a\u2028b\u2029c"), "a b c")

    def test_control_and_private_use_removed(self):
        self.assertEqual(sanitize_text("a\x00b\x07c\ue000d"), "abcd")

    def test_noncharacters_removed(self):
        self.assertEqual(sanitize_text("x\ufdd0y\uffffz"), "xyz")

    def test_plain_text_unchanged(self):
        self.assertEqual(sanitize_text("Guardrail install, bay 3"), "Guardrail install, bay 3")


class TestForbiddenCharacters(unittest.TestCase):

    def test_noncharacter_ranges(self):
        self.assertTrue(is_noncharacter(0xFDD0))
        self.assertTrue(is_noncharacter(0xFDEF))
        self.assertTrue(is_noncharacter(0x1FFFE))
        self.assertFalse(is_noncharacter(ord("A")))

    def test_find_bad_chars_reports_each_class(self):
        problems = find_bad_chars("a\x01\u200b\ufffd")
        self.assertIn("ASCII control characters", problems)
        self.assertIn("zero-width characters", problems)
        self.assertIn("replacement character U+FFFD", problems)

    def test_clean_text_has_no_problems(self):
        self.assertEqual(find_bad_chars("Control c1"), [])

    def test_replacement_character_fails_closed_in_strict_mode(self):
        """U+FFFD survives sanitization and stops rendering."""
        with self.assertRaises(ForbiddenCharactersError) as ctx:
            safe_text("Broken \ufffd title", context="controls title")
        self.assertIn("controls title", str(ctx.exception))
        self.assertIn("replacement character U+FFFD", ctx.exception.problems)

    def test_relaxed_mode_passes_through(self):
        self.assertEqual(safe_text("Broken \ufffd title", strict=False), "Broken \ufffd title")

    def test_assert_no_bad_chars_direct(self):
        assert_no_bad_chars("fine")
        with self.assertRaises(ForbiddenCharactersError):
            assert_no_bad_chars("tab\there")
        assert_no_bad_chars("tab\there", strict=False)

    def test_safe_text_output_is_always_clean(self):
        out = safe_text("\u201cGuard\u200brail\u201d\x00\n\u2014 ok")
        self.assertEqual(find_bad_chars(out), [])
        self.assertEqual(out, '"Guardrail" - ok')


if __name__ == "__main__":
    unittest.main()
