# tests/unit/core/test_unit_models.py — v1
"""Tests for core/models.py — shared Pydantic models.

Also covers version.py import validation.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from partledger.core.models import (
    ContentPart,
    ContentRecord,
    HashTriple,
    PartHash,
    PartRecord,
    PublishResult,
    VerificationReport,
)


class TestVersion:
    def test_version_exported(self):
        import partledger
        from partledger.version import __version__

        assert partledger.__version__ == __version__
        assert __version__.count(".") == 2


class TestHashTriple:
    def test_complete(self):
        triple = HashTriple(sha256="a", blake2b="b", md5="c")
        assert triple.is_complete is True
        assert triple.digests() == {"sha256": "a", "blake2b": "b", "md5": "c"}

    def test_legacy_primary_only(self):
        triple = HashTriple(sha256="a")
        assert triple.is_complete is False
        assert triple.digests() == {"sha256": "a"}

    def test_frozen(self):
        triple = HashTriple(sha256="a")
        with pytest.raises(ValidationError):
            triple.sha256 = "b"

    def test_part_hash_number(self):
        with pytest.raises(ValidationError):
            PartHash(sha256="a", part_number=0)


class TestContentPart:
    def test_part_number_positive(self):
        with pytest.raises(ValidationError):
            ContentPart(part_number=0, content="x", byte_size=1, word_count=1, boundary="end")

    def test_unknown_boundary(self):
        with pytest.raises(ValidationError):
            ContentPart(part_number=1, content="x", byte_size=1, word_count=1, boundary="line")


class TestLocatorAliases:
    def test_part_record_permlink(self):
        assert PartRecord(part_number=1, permlink="p").locator == "p"

    def test_content_record_permlink(self):
        record = ContentRecord.model_validate({"author": "a", "permlink": "p", "votes": 3})
        assert record.locator == "p"
        assert record.body == ""

    def test_publish_result_extra_kept(self):
        result = PublishResult.model_validate({"permlink": "p", "block_num": 42})
        assert result.locator == "p"
        assert result.model_extra == {"block_num": 42}


class TestVerificationReport:
    def test_all_verified(self):
        assert VerificationReport(verified=[1, 2]).all_verified is True

    def test_missing_blocks_all_verified(self):
        assert VerificationReport(verified=[1], missing=[2]).all_verified is False

    def test_failed_blocks_all_verified(self):
        assert VerificationReport(failed=[1], reasons={1: "not_found"}).all_verified is False
