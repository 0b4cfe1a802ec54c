import argparse
import json

import requests


def redeem(base_url: str, token: str, challenge: str, timeout: float = 5) -> tuple[int, dict | str]:
    resp = requests.post(
        f"{base_url}/verify-token",
        json={"t": token, "cf-turnstile-response": challenge},
        timeout=timeout,
    )
    try:
        return resp.status_code, resp.json()
    except ValueError:
        return resp.status_code, resp.text


def main():
    parser = argparse.ArgumentParser(description="Redeem a redirect token")
    parser.add_argument("token")
    parser.add_argument("challenge", help="Turnstile response value (a test-key dummy works against test secrets)")
    parser.add_argument("--base", default="http://127.0.0.1:8000", help="API base URL")
    parser.add_argument("--repeat", type=int, default=1, help="redeem the token this many times")
    args = parser.parse_args()

    for i in range(args.repeat):
        status, data = redeem(args.base, args.token, args.challenge)
        print(f"[{i + 1}] {status} {json.dumps(data) if isinstance(data, dict) else data}")
        if status != 200:
            break


if __name__ == "__main__":
    main()
