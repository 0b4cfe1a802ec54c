import json
import logging
import time

from fastapi import Depends, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError

from tokengate.config import load_config
from tokengate.errors import AuthorizationFailure, NotFound, UpstreamFailure, ValidationFailure
from tokengate.events import log_event, token_prefix
from tokengate.models import MintRequest, MintResponse, RedeemRequest, RedeemResponse
from tokengate.security import check_admin_key
from tokengate.store import build_store
from tokengate.tokens import TokenService
from tokengate.turnstile import TurnstileVerifier, client_ip

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Token Gate")

config = load_config("config.json")
service = TokenService(config, build_store(config), TurnstileVerifier(config))


def get_service() -> TokenService:
    return service


@app.get("/health")
def health():
    return {"status": "ok"}


@app.api_route("/generate-token", methods=["GET", "POST"])
async def generate_token(request: Request, svc: TokenService = Depends(get_service)):
    start_time = time.perf_counter()
    provided = request.headers.get("x-admin-key") or request.query_params.get("admin_key")
    if not check_admin_key(provided, svc.config.admin_key):
        await _log(svc, "mint", "unauthorized", start_time)
        return PlainTextResponse("unauthorized", status_code=401)

    if request.method == "POST":
        try:
            body = await _json_body(request)
        except ValueError:
            await _log(svc, "mint", "invalid_request", start_time)
            return PlainTextResponse("invalid json", status_code=400)
    else:
        body = dict(request.query_params)

    try:
        req = MintRequest.model_validate(body)
        token, ttl = await run_in_threadpool(svc.mint, req.redirect_url, req.ttl)
    except ValidationError:
        await _log(svc, "mint", "invalid_request", start_time)
        return PlainTextResponse("invalid request", status_code=400)
    except ValidationFailure as exc:
        await _log(svc, "mint", "invalid_request", start_time)
        return PlainTextResponse(exc.detail, status_code=exc.status_code)
    except UpstreamFailure as exc:
        await _log(svc, "mint", "store_error", start_time)
        return JSONResponse(exc.payload or {"error": exc.detail}, status_code=exc.status_code)

    await _log(svc, "mint", "success", start_time, {"token": token_prefix(token), "ttl": ttl})
    return MintResponse(token=token, expires_in=ttl)


@app.api_route("/verify-token", methods=["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"])
async def verify_token(request: Request, svc: TokenService = Depends(get_service)):
    if request.method != "POST":
        return PlainTextResponse("method not allowed", status_code=405)

    start_time = time.perf_counter()
    token = None
    try:
        req = RedeemRequest.model_validate(await _json_body(request))
        token = req.token_value
        meta = await run_in_threadpool(svc.redeem, token, req.challenge, client_ip(request.headers))
    except ValidationError:
        await _log(svc, "redeem", "invalid_request", start_time)
        return PlainTextResponse("invalid request", status_code=400)
    except ValidationFailure as exc:
        await _log(svc, "redeem", "invalid_request", start_time, {"token": token_prefix(token)})
        return PlainTextResponse(exc.detail, status_code=exc.status_code)
    except AuthorizationFailure as exc:
        await _log(svc, "redeem", "challenge_failed", start_time, {"token": token_prefix(token)})
        return JSONResponse(
            {"ok": False, "detail": exc.detail, "verify": exc.payload},
            status_code=exc.status_code,
        )
    except NotFound as exc:
        await _log(svc, "redeem", "not_found", start_time, {"token": token_prefix(token)})
        return JSONResponse({"ok": False, "detail": exc.detail}, status_code=exc.status_code)
    except Exception:
        logger.exception("redeem failed")
        await _log(svc, "redeem", "error", start_time, {"token": token_prefix(token)})
        return JSONResponse({"ok": False, "error": "internal error"}, status_code=500)

    await _log(svc, "redeem", "success", start_time, {"token": token_prefix(token), "uses": meta.uses})
    return RedeemResponse(url=meta.redirect_url)


async def _json_body(request: Request) -> dict:
    raw = await request.body()
    if not raw:
        return {}
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("request body must be a json object")
    return data


async def _log(svc: TokenService, event: str, result: str, start_time: float, extra: dict | None = None):
    latency_ms = (time.perf_counter() - start_time) * 1000
    await run_in_threadpool(log_event, svc.config.events_log_file, event, result, latency_ms, extra)
