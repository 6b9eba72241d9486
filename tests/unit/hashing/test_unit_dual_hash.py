# tests/unit/hashing/test_unit_dual_hash.py — v1
"""Tests for hashing/dual_hash.py — hash triples, series hashing, verification."""

from __future__ import annotations

import hashlib

import pytest

from partledger.chunking.content_splitter import ContentSplitter
from partledger.core.models import HashTriple
from partledger.hashing.dual_hash import (
    compare_digests,
    hash_one,
    hash_series,
    strip_manifest_marker,
    verify_series,
)
from partledger.manifest.compact import embed_marker

ABC_SHA256 = "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
ABC_MD5 = "900150983cd24fb0d6963f7d28e17f72"
MARKER = '<!--ARCHIVE-MANIFEST:{"s":"x","t":2,"p":1}-->'


class TestHashOne:
    def test_known_digests(self):
        triple = hash_one("abc")
        assert triple.sha256 == ABC_SHA256
        assert triple.md5 == ABC_MD5
        assert triple.blake2b == hashlib.blake2b(b"abc").hexdigest()
        assert len(triple.blake2b) == 128
        assert triple.is_complete

    def test_utf8_encoding(self):
        assert hash_one("é").sha256 == hashlib.sha256("é".encode("utf-8")).hexdigest()

    def test_rejects_non_string(self):
        with pytest.raises(TypeError):
            hash_one(b"abc")  # type: ignore[arg-type]


class TestHashSeries:
    def test_per_part_and_full(self):
        result = hash_series(["ab", "c"])
        assert [h.part_number for h in result.per_part] == [1, 2]
        assert result.per_part[0].sha256 == hash_one("ab").sha256
        assert result.full.sha256 == ABC_SHA256

    def test_empty_rejected(self):
        with pytest.raises(ValueError, match="non-empty"):
            hash_series([])


class TestStripMarker:
    def test_strips_marker_and_separator(self):
        assert strip_manifest_marker("body\n\n" + MARKER) == "body"

    def test_crlf_separator(self):
        assert strip_manifest_marker("body\r\n\r\n" + MARKER) == "body"

    def test_only_two_line_breaks_belong_to_marker(self):
        assert strip_manifest_marker("body\n\n\n" + MARKER) == "body\n"

    def test_trailing_space_kept(self):
        assert strip_manifest_marker("word \n\n" + MARKER) == "word "

    def test_sentence_end_kept(self):
        assert strip_manifest_marker("End of it. \t\n\n" + MARKER) == "End of it. \t"

    def test_indented_marker(self):
        assert strip_manifest_marker("body \n\n  " + MARKER) == "body "

    def test_multiline_marker(self):
        marker = '<!--ARCHIVE-MANIFEST:{"s":\n"x"}-->'
        assert strip_manifest_marker("body\n\n" + marker + " tail") == "body tail"

    def test_no_marker_unchanged(self):
        assert strip_manifest_marker("plain <!-- comment -->") == "plain <!-- comment -->"

    def test_empty_passthrough(self):
        assert strip_manifest_marker("") == ""


class TestCompareDigests:
    def test_only_expected_fields_compared(self):
        actual = hash_one("abc")
        matches = compare_digests(actual, HashTriple(sha256=ABC_SHA256))
        assert matches == {"sha256": True}


class TestVerifySeries:
    def test_valid(self):
        hashes = hash_series(["ab", "c"])
        result = verify_series(["ab", "c"], hashes.per_part, hashes.full)
        assert result.valid is True
        assert result.full_match is True
        assert result.reason is None

    def test_count_mismatch(self):
        hashes = hash_series(["ab", "c"])
        result = verify_series(["abc"], hashes.per_part, hashes.full)
        assert result.valid is False
        assert result.reason == "part_count_mismatch"
        assert result.expected_count == 2
        assert result.actual_count == 1

    def test_hash_mismatch(self):
        hashes = hash_series(["ab", "c"])
        result = verify_series(["ab", "d"], hashes.per_part, hashes.full)
        assert result.valid is False
        assert result.reason == "hash_mismatch"
        assert result.part_results[0].valid is True
        assert result.part_results[1].valid is False
        assert result.full_match is False

    def test_legacy_primary_only_records(self):
        result = verify_series(
            ["ab", "c"],
            [hash_one("ab").sha256, {"sha256": hash_one("c").sha256}],
            ABC_SHA256,
        )
        assert result.valid is True
        assert result.full_matches == {"sha256": True}


class TestEmbeddedRoundTrip:
    def test_word_split_parts_survive_marker(self, settings, manifest_factory):
        parts = ContentSplitter(settings).split("word " * 30000)
        assert parts[0].boundary == "word"
        assert parts[0].content.endswith(" ")

        texts = [p.content for p in parts]
        manifest = manifest_factory(texts)
        for part in parts:
            body = embed_marker(part.content, manifest, part.part_number)
            assert strip_manifest_marker(body) == part.content
            assert hash_one(strip_manifest_marker(body)) == hash_one(part.content)
