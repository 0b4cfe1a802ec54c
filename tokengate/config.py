from dataclasses import dataclass, fields
import json
import os

TURNSTILE_VERIFY_URL = "https://challenges.cloudflare.com/turnstile/v0/siteverify"


def _bool(env_val: str, default: bool) -> bool:
    if env_val is None:
        return default
    return env_val.lower() in {"1", "true", "yes", "on"}


@dataclass
class Config:
    admin_key: str = ""

    upstash_rest_url: str = ""
    upstash_rest_token: str = ""

    turnstile_secret: str = ""
    turnstile_verify_url: str = TURNSTILE_VERIFY_URL

    default_ttl_seconds: int = 300
    token_bytes: int = 18
    http_timeout_s: float = 5.0
    lenient_metadata: bool = True

    events_log_file: str = "events.log"


def _apply_env(cfg: Config, environ) -> None:
    for f in fields(cfg):
        raw = environ.get(f.name.upper())
        if raw is None:
            continue
        current = getattr(cfg, f.name)
        if isinstance(current, bool):
            setattr(cfg, f.name, _bool(raw, current))
        elif isinstance(current, int):
            setattr(cfg, f.name, int(raw))
        elif isinstance(current, float):
            setattr(cfg, f.name, float(raw))
        else:
            setattr(cfg, f.name, raw)


def load_config(path: str | None = None, environ=None) -> Config:
    cfg = Config()
    if path and os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        for k, v in data.items():
            if hasattr(cfg, k):
                setattr(cfg, k, v)

    _apply_env(cfg, os.environ if environ is None else environ)
    cfg.upstash_rest_url = cfg.upstash_rest_url.rstrip("/")
    if cfg.token_bytes < 16:
        raise ValueError("token_bytes must be at least 16")
    if cfg.default_ttl_seconds < 1:
        raise ValueError("default_ttl_seconds must be positive")
    return cfg
