"""
Tests for the credential pool.
"""

import pytest

from exam_extractor import CredentialPool, NoCredentialsError
from exam_extractor.credentials import mask_credential


class TestCredentialPoolInit:
    """Tests for pool construction."""

    def test_empty_pool_raises(self):
        with pytest.raises(NoCredentialsError):
            CredentialPool([])

    def test_blank_entries_only_raises(self):
        with pytest.raises(NoCredentialsError):
            CredentialPool(["", "   "])

    def test_blanks_dropped_and_duplicates_collapsed(self):
        pool = CredentialPool(["key-a", "", " key-b ", "key-a"])
        assert pool.credentials == ("key-a", "key-b")
        assert len(pool) == 2
        assert pool.size == 2

    def test_initial_usage_is_zero(self):
        pool = CredentialPool(["key-a", "key-b"])
        assert pool.usage() == {"key-a": 0, "key-b": 0}


class TestAcquire:
    """Tests for least-used selection."""

    def test_round_robin_when_all_calls_succeed(self):
        pool = CredentialPool(["key-a", "key-b", "key-c"])
        acquired = [pool.acquire() for _ in range(6)]
        assert acquired == ["key-a", "key-b", "key-c", "key-a", "key-b", "key-c"]

    def test_tie_goes_to_first_configured(self):
        pool = CredentialPool(["key-b", "key-a"])
        assert pool.acquire() == "key-b"

    def test_acquire_increments_count(self):
        pool = CredentialPool(["key-a"])
        pool.acquire()
        pool.acquire()
        assert pool.usage_count("key-a") == 2

    @pytest.mark.parametrize("size,calls", [(1, 5), (2, 7), (3, 10), (5, 23)])
    def test_never_picks_more_used_credential(self, size, calls):
        pool = CredentialPool([f"key-{i}" for i in range(size)])
        for _ in range(calls):
            before = pool.usage()
            chosen = pool.acquire()
            assert before[chosen] == min(before.values())

        counts = pool.usage().values()
        assert max(counts) - min(counts) <= 1
        assert sum(counts) == calls

    def test_usage_snapshot_is_a_copy(self):
        pool = CredentialPool(["key-a"])
        snapshot = pool.usage()
        pool.acquire()
        assert snapshot == {"key-a": 0}


class TestMaskCredential:
    """Tests for log-safe credential rendering."""

    def test_long_credential(self):
        assert mask_credential("AIzaSyExampleKey1234") == "AIza...1234"

    def test_short_credential(self):
        assert mask_credential("short") == "****"
