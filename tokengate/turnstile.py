import logging
from dataclasses import dataclass, field
from typing import Mapping

import requests

from tokengate.config import Config
from tokengate.errors import UpstreamFailure

logger = logging.getLogger(__name__)


@dataclass
class VerifyResult:
    success: bool
    raw: dict = field(default_factory=dict)


class TurnstileVerifier:
    def __init__(self, config: Config, session: requests.Session | None = None):
        self.secret = config.turnstile_secret
        self.verify_url = config.turnstile_verify_url
        self.timeout_s = config.http_timeout_s
        self.session = session or requests.Session()

    def verify(self, response: str, remote_ip: str | None = None) -> VerifyResult:
        form = {"secret": self.secret, "response": response}
        if remote_ip:
            form["remoteip"] = remote_ip

        try:
            resp = self.session.post(self.verify_url, data=form, timeout=self.timeout_s)
            raw = resp.json()
        except requests.RequestException as exc:
            logger.warning("turnstile verification unreachable: %s", exc)
            raise UpstreamFailure("challenge verification unreachable") from exc
        except ValueError as exc:
            raise UpstreamFailure("challenge verification returned non-json response") from exc

        if not isinstance(raw, dict):
            raise UpstreamFailure("challenge verification returned unexpected payload")
        return VerifyResult(success=raw.get("success") is True, raw=raw)


def client_ip(headers: Mapping[str, str]) -> str | None:
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return headers.get("cf-connecting-ip") or None
