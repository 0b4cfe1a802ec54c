"""Token lifecycle: minting and challenge-gated redemption.

Records live only in the key-value store under ``token:<token>``. The store's
expiry is the single source of truth for liveness: a record the store no
longer returns is treated as never having existed.

Redemption renews the store entry with the *remaining* lifetime computed from
``createdAt + ttlSeconds``, so repeated use never extends a token past its
original deadline.

Redemption is a read-modify-write against the store with no compare-and-swap.
Two concurrent redemptions of one token can both read the same ``uses`` value
and both write back ``uses + 1``; one increment is then lost.
"""
import json
import logging
import secrets
import time

from pydantic import ValidationError

from tokengate.config import Config
from tokengate.errors import AuthorizationFailure, InternalError, NotFound, ValidationFailure
from tokengate.models import TokenMeta

logger = logging.getLogger(__name__)

KEY_PREFIX = "token:"


def now_ms() -> int:
    return int(time.time() * 1000)


def generate_token(nbytes: int = 18) -> str:
    return secrets.token_hex(nbytes)


def token_key(token: str) -> str:
    return f"{KEY_PREFIX}{token}"


def parse_ttl(ttl, default: int) -> int:
    if ttl is None or ttl == "":
        return default
    if isinstance(ttl, bool):
        raise ValidationFailure("invalid ttl")
    if isinstance(ttl, str):
        ttl = ttl.strip()
        if not (ttl.isascii() and ttl.isdigit()):
            raise ValidationFailure("invalid ttl")
        ttl = int(ttl)
    if not isinstance(ttl, int) or ttl < 1:
        raise ValidationFailure("invalid ttl")
    return ttl


def remaining_ttl_seconds(meta: TokenMeta, now: int) -> int:
    remaining_ms = meta.expires_at_ms - now
    # stores read an expiry of 0 or less as "gone" or "never expires"
    return max(1, remaining_ms // 1000)


def parse_meta(raw: str, now: int, default_ttl: int, lenient: bool = True) -> TokenMeta:
    try:
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("metadata is not an object")
        data["createdAt"] = data.get("createdAt") or now
        data["ttlSeconds"] = data.get("ttlSeconds") or default_ttl
        data["uses"] = data.get("uses") or 0
        return TokenMeta.model_validate(data)
    except (ValueError, ValidationError) as exc:
        if not lenient:
            raise InternalError("malformed token metadata") from exc
        logger.warning("malformed token metadata, treating raw value as redirect url")
        return TokenMeta(redirect_url=str(raw), created_at=now, ttl_seconds=default_ttl, uses=0)


class TokenService:
    def __init__(self, config: Config, store, verifier):
        self.config = config
        self.store = store
        self.verifier = verifier

    def mint(self, redirect_url: str | None, ttl=None) -> tuple[str, int]:
        if not redirect_url or not isinstance(redirect_url, str):
            raise ValidationFailure("missing url")
        ttl = parse_ttl(ttl, self.config.default_ttl_seconds)

        token = generate_token(self.config.token_bytes)
        meta = TokenMeta(redirect_url=redirect_url, created_at=now_ms(), ttl_seconds=ttl, uses=0)
        self.store.set(token_key(token), meta.to_json(), ttl)
        return token, ttl

    def redeem(self, token: str | None, challenge: str | None, remote_ip: str | None = None) -> TokenMeta:
        if not token:
            raise ValidationFailure("missing token")
        if not challenge:
            raise ValidationFailure("missing turnstile response")

        result = self.verifier.verify(challenge, remote_ip)
        if not result.success:
            raise AuthorizationFailure("turnstile failed", result.raw)

        key = token_key(token)
        raw = self.store.get(key)
        if raw is None:
            raise NotFound("token not found or expired")

        now = now_ms()
        meta = parse_meta(raw, now, self.config.default_ttl_seconds, self.config.lenient_metadata)
        remaining = remaining_ttl_seconds(meta, now)

        meta.uses += 1
        meta.last_used_at = now

        self.store.set(key, meta.to_json(), remaining)
        return meta
