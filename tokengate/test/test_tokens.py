import json
import os
import sys
from unittest.mock import patch

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))
from tokengate.config import Config
from tokengate.errors import AuthorizationFailure, InternalError, NotFound, UpstreamFailure, ValidationFailure
from tokengate.models import TokenMeta
from tokengate.test.fakes import VALID_CHALLENGE, RecordingStore, StubVerifier
from tokengate.tokens import (
    TokenService,
    generate_token,
    parse_meta,
    parse_ttl,
    remaining_ttl_seconds,
    token_key,
)


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def verifier():
    return StubVerifier()


@pytest.fixture
def service(store, verifier):
    return TokenService(Config(admin_key="secret", events_log_file=""), store, verifier)


class TestHelpers:
    """Test token generation and TTL arithmetic"""

    def test_generate_token_is_hex_of_requested_length(self):
        """18 random bytes encode to 36 hex characters"""
        token = generate_token(18)
        assert len(token) == 36
        int(token, 16)

    def test_generate_token_unique(self):
        """Tokens do not repeat"""
        tokens = {generate_token() for _ in range(50)}
        assert len(tokens) == 50

    def test_token_key_namespace(self):
        assert token_key("abc") == "token:abc"

    def test_parse_ttl_default(self):
        assert parse_ttl(None, 300) == 300
        assert parse_ttl("", 300) == 300

    def test_parse_ttl_accepts_digit_strings(self):
        assert parse_ttl("60", 300) == 60
        assert parse_ttl(45, 300) == 45

    @pytest.mark.parametrize("bad", [0, -5, "abc", "1.5", True, 2.5, "²", "١٢"])
    def test_parse_ttl_rejects_invalid(self, bad):
        with pytest.raises(ValidationFailure):
            parse_ttl(bad, 300)

    def test_remaining_ttl_full(self):
        meta = TokenMeta(redirect_url="https://x", created_at=1_000_000, ttl_seconds=300)
        assert remaining_ttl_seconds(meta, 1_000_000) == 300

    def test_remaining_ttl_floors_partial_seconds(self):
        meta = TokenMeta(redirect_url="https://x", created_at=1_000_000, ttl_seconds=300)
        assert remaining_ttl_seconds(meta, 1_100_500) == 199

    def test_remaining_ttl_never_below_one(self):
        """Past the deadline the renewal still writes at least one second"""
        meta = TokenMeta(redirect_url="https://x", created_at=1_000_000, ttl_seconds=10)
        assert remaining_ttl_seconds(meta, 1_010_000) == 1
        assert remaining_ttl_seconds(meta, 5_000_000) == 1


class TestParseMeta:
    """Test metadata deserialization and the lenient fallback"""

    def test_parses_full_record(self):
        raw = json.dumps({"redirectUrl": "https://a", "createdAt": 5, "ttlSeconds": 60, "uses": 2, "lastUsedAt": 7})
        meta = parse_meta(raw, now=100, default_ttl=300)
        assert meta.redirect_url == "https://a"
        assert meta.created_at == 5
        assert meta.ttl_seconds == 60
        assert meta.uses == 2
        assert meta.last_used_at == 7

    def test_missing_fields_are_defaulted(self):
        meta = parse_meta(json.dumps({"redirectUrl": "https://a"}), now=100, default_ttl=300)
        assert meta.created_at == 100
        assert meta.ttl_seconds == 300
        assert meta.uses == 0

    def test_malformed_value_treated_as_url(self):
        meta = parse_meta("https://legacy.example", now=100, default_ttl=300)
        assert meta.redirect_url == "https://legacy.example"
        assert meta.created_at == 100
        assert meta.ttl_seconds == 300
        assert meta.uses == 0

    def test_non_object_json_treated_as_malformed(self):
        meta = parse_meta("[1, 2]", now=100, default_ttl=300)
        assert meta.redirect_url == "[1, 2]"

    def test_strict_mode_raises(self):
        with pytest.raises(InternalError):
            parse_meta("not json", now=100, default_ttl=300, lenient=False)

    def test_serialization_uses_camel_case(self):
        meta = TokenMeta(redirect_url="https://a", created_at=1, ttl_seconds=2)
        assert json.loads(meta.to_json()) == {"redirectUrl": "https://a", "createdAt": 1, "ttlSeconds": 2, "uses": 0}


class TestMint:
    """Test TokenService.mint"""

    def test_mint_writes_record(self, service, store):
        with patch('time.time') as mock_time:
            mock_time.return_value = 1000.0
            token, ttl = service.mint("https://example.com/x", 60)

        assert ttl == 60
        assert len(store.writes) == 1
        key, value, ex = store.writes[0]
        assert key == f"token:{token}"
        assert ex == 60
        assert json.loads(value) == {
            "redirectUrl": "https://example.com/x",
            "createdAt": 1_000_000,
            "ttlSeconds": 60,
            "uses": 0,
        }

    def test_mint_uses_default_ttl(self, service, store):
        token, ttl = service.mint("https://example.com/x")
        assert ttl == 300
        assert store.writes[0][2] == 300

    def test_mint_missing_url_does_not_write(self, service, store):
        with pytest.raises(ValidationFailure):
            service.mint(None, 60)
        with pytest.raises(ValidationFailure):
            service.mint("", 60)
        assert store.writes == []

    def test_mint_invalid_ttl_does_not_write(self, service, store):
        with pytest.raises(ValidationFailure):
            service.mint("https://example.com", "soon")
        assert store.writes == []

    def test_mint_propagates_store_failure(self, service, store):
        store.fail_writes = True
        with pytest.raises(UpstreamFailure):
            service.mint("https://example.com", 60)


class TestRedeem:
    """Test TokenService.redeem"""

    def test_mint_then_redeem_returns_url(self, service):
        token, _ = service.mint("https://example.com/x", 60)
        meta = service.redeem(token, VALID_CHALLENGE)
        assert meta.redirect_url == "https://example.com/x"
        assert meta.uses == 1

    def test_repeated_redeem_increments_uses(self, service, store):
        token, _ = service.mint("https://example.com/x", 60)
        first = service.redeem(token, VALID_CHALLENGE)
        second = service.redeem(token, VALID_CHALLENGE)
        assert second.uses == first.uses + 1
        stored = json.loads(store.get(token_key(token)))
        assert stored["uses"] == 2

    def test_redeem_sets_last_used(self, service, store):
        with patch('time.time') as mock_time:
            mock_time.return_value = 1000.0
            token, _ = service.mint("https://example.com/x", 60)
            mock_time.return_value = 1010.0
            meta = service.redeem(token, VALID_CHALLENGE)
        assert meta.last_used_at == 1_010_000
        assert meta.created_at == 1_000_000

    def test_renewal_preserves_remaining_ttl(self, service, store):
        """Redeeming 100s into a 300s token writes an expiry of about 200s, never 300s"""
        with patch('time.time') as mock_time:
            mock_time.return_value = 1000.0
            token, _ = service.mint("https://example.com/x", 300)
            mock_time.return_value = 1100.0
            service.redeem(token, VALID_CHALLENGE)

        _, _, ex = store.writes[-1]
        assert 199 <= ex <= 200
        assert ex != 300

    def test_renewal_never_extends_deadline(self, service, store):
        with patch('time.time') as mock_time:
            mock_time.return_value = 1000.0
            token, _ = service.mint("https://example.com/x", 300)
            for t in (1050.0, 1150.0, 1250.0):
                mock_time.return_value = t
                service.redeem(token, VALID_CHALLENGE)
                assert t + store.writes[-1][2] <= 1300.0

    def test_expired_token_is_not_found(self, service):
        with patch('time.time') as mock_time:
            mock_time.return_value = 1000.0
            token, _ = service.mint("https://example.com/x", 60)
            mock_time.return_value = 1061.0
            with pytest.raises(NotFound):
                service.redeem(token, VALID_CHALLENGE)

    def test_unknown_token_is_not_found(self, service):
        with pytest.raises(NotFound):
            service.redeem("deadbeef", VALID_CHALLENGE)

    def test_invalid_challenge_does_not_touch_store(self, service, store):
        token, _ = service.mint("https://example.com/x", 60)
        writes_before = len(store.writes)

        with pytest.raises(AuthorizationFailure) as exc_info:
            service.redeem(token, "bad-response")

        assert exc_info.value.payload["success"] is False
        assert len(store.writes) == writes_before
        assert json.loads(store.get(token_key(token)))["uses"] == 0

    def test_remote_ip_forwarded_to_verifier(self, service, verifier):
        token, _ = service.mint("https://example.com/x", 60)
        service.redeem(token, VALID_CHALLENGE, "203.0.113.7")
        assert verifier.calls == [(VALID_CHALLENGE, "203.0.113.7")]

    def test_missing_token_or_challenge(self, service, verifier):
        with pytest.raises(ValidationFailure):
            service.redeem(None, VALID_CHALLENGE)
        with pytest.raises(ValidationFailure):
            service.redeem("abc", "")
        assert verifier.calls == []

    def test_failed_renewal_write_fails_redemption(self, service, store):
        token, _ = service.mint("https://example.com/x", 60)
        store.fail_writes = True
        with pytest.raises(UpstreamFailure):
            service.redeem(token, VALID_CHALLENGE)

    def test_malformed_record_redeems_leniently(self, service, store):
        store.set(token_key("legacy"), "https://legacy.example", 60)
        meta = service.redeem("legacy", VALID_CHALLENGE)
        assert meta.redirect_url == "https://legacy.example"
        assert meta.uses == 1

    def test_malformed_record_strict_mode(self, store, verifier):
        strict = TokenService(Config(lenient_metadata=False, events_log_file=""), store, verifier)
        store.set(token_key("legacy"), "https://legacy.example", 60)
        with pytest.raises(InternalError):
            strict.redeem("legacy", VALID_CHALLENGE)
