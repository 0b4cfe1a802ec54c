import argparse
import json
from pathlib import Path
import sys

import requests

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from tokengate.config import load_config


CFG = load_config("config.json")


def mint(base_url: str, url: str, ttl: int | None, admin_key: str) -> dict:
    payload = {"url": url}
    if ttl is not None:
        payload["ttl"] = ttl
    resp = requests.post(
        f"{base_url}/generate-token",
        json=payload,
        headers={"x-admin-key": admin_key},
        timeout=CFG.http_timeout_s,
    )
    if resp.status_code != 200:
        raise SystemExit(f"mint failed ({resp.status_code}): {resp.text}")
    return resp.json()


def main():
    parser = argparse.ArgumentParser(description="Mint a redirect token")
    parser.add_argument("url", help="destination URL bound to the token")
    parser.add_argument("--ttl", type=int, help="lifetime in seconds")
    parser.add_argument("--base", default="http://127.0.0.1:8000", help="API base URL")
    parser.add_argument("--admin-key", default=CFG.admin_key, help="defaults to ADMIN_KEY")
    args = parser.parse_args()
    print(json.dumps(mint(args.base, args.url, args.ttl, args.admin_key), indent=2))


if __name__ == "__main__":
    main()
