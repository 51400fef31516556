"""Verification codes and the in-process cache that backs them without Redis."""

import pytest

from tasknest.config import AuthConfig
from tasknest.service.verification import Purpose, VerificationCodeStore, generate_code
from tasknest.storage.local_cache import LocalCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return LocalCache(clock=clock)


@pytest.fixture
def codes(cache):
    return VerificationCodeStore(
        cache,
        AuthConfig(
            jwt_secret="unused-secret-for-codes",
            signup_code_ttl_seconds=300,
            reset_password_code_ttl_seconds=120,
        ),
    )


class TestGenerateCode:
    def test_six_digits(self):
        for _ in range(200):
            code = generate_code()
            assert len(code) == 6
            assert code.isdigit()

    def test_leading_zeros_kept(self, monkeypatch):
        monkeypatch.setattr("tasknest.service.verification.secrets.randbelow", lambda n: 42)
        assert generate_code() == "000042"


class TestVerificationCodeStore:
    async def test_save_then_verify(self, codes):
        await codes.save(Purpose.SIGNUP, "a@example.com", "123456")

        assert await codes.verify(Purpose.SIGNUP, "a@example.com", "123456") is True
        assert await codes.verify(Purpose.SIGNUP, "a@example.com", "654321") is False
        # verify leaves the code in place
        assert await codes.verify(Purpose.SIGNUP, "a@example.com", "123456") is True

    async def test_purposes_are_separate(self, codes, cache):
        await codes.save(Purpose.RESET_PASSWORD, "a@example.com", "123456")

        assert await codes.verify(Purpose.SIGNUP, "a@example.com", "123456") is False
        assert await cache.get("resetPassword:a@example.com") == "123456"

    async def test_codes_expire_per_purpose(self, codes, clock):
        await codes.save(Purpose.SIGNUP, "a@example.com", "111111")
        await codes.save(Purpose.RESET_PASSWORD, "a@example.com", "222222")

        clock.now += 121
        assert await codes.verify(Purpose.RESET_PASSWORD, "a@example.com", "222222") is False
        assert await codes.verify(Purpose.SIGNUP, "a@example.com", "111111") is True

        clock.now += 180
        assert await codes.verify(Purpose.SIGNUP, "a@example.com", "111111") is False

    async def test_delete(self, codes):
        await codes.save(Purpose.SIGNUP, "a@example.com", "123456")
        await codes.delete(Purpose.SIGNUP, "a@example.com")

        assert await codes.verify(Purpose.SIGNUP, "a@example.com", "123456") is False
        # deleting again is harmless
        await codes.delete(Purpose.SIGNUP, "a@example.com")

    async def test_non_ascii_input_does_not_match(self, codes):
        await codes.save(Purpose.SIGNUP, "a@example.com", "123456")
        assert await codes.verify(Purpose.SIGNUP, "a@example.com", "12345６") is False


class TestLocalCache:
    async def test_set_overwrites_and_resets_ttl(self, cache, clock):
        await cache.set("k", "one", 10)
        clock.now += 8
        await cache.set("k", "two", 10)
        clock.now += 8

        assert await cache.get("k") == "two"

    async def test_incr_window_is_fixed(self, cache, clock):
        assert await cache.incr_window("ip", 10) == 1
        clock.now += 9
        assert await cache.incr_window("ip", 10) == 2
        clock.now += 1
        # the window does not slide with later hits
        assert await cache.incr_window("ip", 10) == 1

    async def test_delete_reports_removal(self, cache):
        await cache.set("k", "v", 10)
        assert await cache.delete("k") == 1
        assert await cache.delete("k") == 0

    async def test_close_drops_entries(self, cache):
        await cache.set("k", "v", 10)
        await cache.close()
        assert await cache.get("k") is None
