# tests/unit/chunking/test_unit_boundary_splitter.py — v1
"""Tests for chunking/boundary_splitter.py — boundary-aware split offsets."""

from __future__ import annotations

import pytest

from partledger.chunking.boundary_splitter import BoundaryKind, find_split


class TestParagraphSplit:
    def test_last_fitting_marker(self):
        assert find_split("aaa\n\nbbb\n\nccc", 1000, "paragraph") == 10

    def test_budget_limits_marker(self):
        # "aaa\n\n" estimates 6 bytes, "aaa\n\nbbb\n\n" 11.
        assert find_split("aaa\n\nbbb\n\nccc", 8, BoundaryKind.PARAGRAPH) == 5

    def test_nothing_fits(self):
        assert find_split("aaa\n\nbbb", 5, "paragraph") == 0

    def test_html_markers(self):
        text = "<p>a</p><p>b</p>tail"
        assert find_split(text, 1000, "paragraph") == 16

    def test_no_marker(self):
        assert find_split("no breaks at all", 1000, "paragraph") == 0


class TestSentenceAndWordSplit:
    def test_sentence(self):
        assert find_split("One. Two! Three", 1000, "sentence") == 10

    def test_sentence_newline_marker(self):
        assert find_split("One.\nTwo", 1000, "sentence") == 5

    def test_word(self):
        assert find_split("alpha beta gamma", 1000, "word") == 11


class TestCharacterSplit:
    def test_ascii(self):
        # Budget 5 allows 4 raw bytes once overhead is added.
        assert find_split("abcdef", 5, "character") == 4

    def test_never_splits_code_point(self):
        assert find_split("éééé", 5, "character") == 2

    def test_whole_text_fits(self):
        assert find_split("abc", 1000, "character") == 3

    def test_long_text_is_single_pass(self):
        text = "x" * 200_000
        offset = find_split(text, 57_344, "character")
        assert 0 < offset < len(text)


def test_unknown_kind():
    with pytest.raises(ValueError):
        find_split("text", 100, "chapter")
