"""Tests for credentials.CredentialPool and JsonCredentialStore."""

import json

from conftest import FakeClock

from bookpress.models.page import Credential
from bookpress.services.credentials import CredentialPool, JsonCredentialStore

A = Credential("token-aaaaaaaaaaaa")
B = Credential("token-bbbbbbbbbbbb")
C = Credential("token-cccccccccccc")


class TestCredential:
    def test_repr_hides_secret(self):
        assert "aaaaaaaaaaaa" not in repr(A)
        assert A.label == "token-aa..."


class TestCredentialPool:
    def test_round_robin(self):
        pool = CredentialPool([A, B, C])
        assert [pool.acquire() for _ in range(4)] == [A, B, C, A]

    def test_skips_cooling_credential(self):
        clock = FakeClock()
        pool = CredentialPool([A, B, C], clock=clock)
        pool.mark_cooldown(B, 60)
        picks = [pool.acquire() for _ in range(6)]
        assert B not in picks
        assert set(picks) == {A, C}

    def test_none_when_all_cooling(self):
        clock = FakeClock()
        pool = CredentialPool([A, B], clock=clock)
        pool.mark_cooldown(A, 10)
        pool.mark_cooldown(B, 20)
        assert pool.acquire() is None

    def test_usable_again_after_cooldown(self):
        clock = FakeClock()
        pool = CredentialPool([A], clock=clock)
        pool.mark_cooldown(A, 10)
        assert pool.acquire() is None
        clock.now += 10
        assert pool.acquire() == A
        assert pool.cooldown_remaining(A) == 0.0

    def test_cooldown_never_retracted(self):
        clock = FakeClock(now=100.0)
        pool = CredentialPool([A], clock=clock)
        assert pool.mark_cooldown(A, 60) == 160.0
        assert pool.mark_cooldown(A, 5) == 160.0
        assert pool.cooldown_until(A) == 160.0
        assert pool.mark_cooldown(A, 90) == 190.0

    def test_cooldown_remaining(self):
        clock = FakeClock(now=0.0)
        pool = CredentialPool([A], clock=clock)
        pool.mark_cooldown(A, 30)
        clock.now = 12.0
        assert pool.cooldown_remaining(A) == 18.0
        assert pool.is_cooling(A)

    def test_membership_only_grows(self):
        pool = CredentialPool([A])
        assert pool.add(B) is True
        assert pool.add(A) is False
        assert len(pool) == 2
        assert B in pool

    def test_empty_pool(self):
        assert CredentialPool().acquire() is None


class TestJsonCredentialStore:
    def test_missing_file_loads_empty(self, tmp_path):
        assert JsonCredentialStore(str(tmp_path / "none.json")).load_all() == []

    def test_append_then_load(self, tmp_path):
        path = tmp_path / "data" / "tokens.json"
        store = JsonCredentialStore(str(path))
        store.append(A)
        store.append(B)
        store.append(A)
        assert store.load_all() == [A, B]
        assert json.loads(path.read_text()) == [A.access_token, B.access_token]

    def test_corrupt_file_loads_empty(self, tmp_path):
        path = tmp_path / "tokens.json"
        path.write_text("{not json")
        assert JsonCredentialStore(str(path)).load_all() == []

    def test_ignores_non_string_entries(self, tmp_path):
        path = tmp_path / "tokens.json"
        path.write_text(json.dumps(["good-token-1", 42, ""]))
        assert JsonCredentialStore(str(path)).load_all() == [Credential("good-token-1")]
