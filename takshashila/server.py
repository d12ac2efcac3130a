from typing import Optional
import logging

from fastapi import Depends, FastAPI, Form, HTTPException, Request
from fastapi.responses import ORJSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.sessions import SessionMiddleware

from . import config
from .auth import UserTokens
from .cashfree import (
    PAYMENT_SUCCESS_WEBHOOK, PaymentGateway, event_kind, event_order_id,
    read_webhook,
)
from .errors import (
    GatewayError, InvalidIdToken, InvalidOrder, MalformedWebhook,
    PaymentNotSuccessful, PaymentRecordNotFound, WebhookSignatureError,
)
from .helpers import ct_equal, is_valid_email, normalize_phone, to_iso
from .infra import timings
from .infra.timings import timeit
from .model.records import Pass, Records
from .notify import Notifier
from .orders import create_order
from .passtypes import display_name
from .reconcile import Reconciler, ReconcileResult
from .services import (
    make_gateway, make_http, make_mailer, make_signer, open_store,
)
from .tokens import QRSigner

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Takshashila Passes",
    default_response_class=ORJSONResponse,
)
app.add_middleware(SessionMiddleware, secret_key=config.SESSION_SECRET)

user_tokens = UserTokens(config.AUTH_SECRET)


def client_ip(request: Request) -> str:
    peer = get_remote_address(request)
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded and peer in config.TRUSTED_PROXIES:
        return forwarded.split(",")[0].strip() or peer
    return peer


limiter = Limiter(key_func=client_ip,
                  storage_uri=config.RATE_LIMIT_STORAGE)
app.state.limiter = limiter


def error(status_code: int, message: str, **extra) -> ORJSONResponse:
    return ORJSONResponse({"error": message, **extra},
                          status_code=status_code)


async def rate_limit_exceeded(request: Request,
                              exc: RateLimitExceeded) -> ORJSONResponse:
    logger.warning("rate limit hit by %s on %s",
                   client_ip(request), request.url.path)
    response = error(429, "Too many requests. Please try again later.")
    response.headers["Retry-After"] = str(exc.limit.limit.get_expiry())
    return response


app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded)


# ----------------------------
# Dependencies
# ----------------------------
def get_records() -> Records:
    return Records(app.state.docs)


def get_gateway() -> PaymentGateway:
    return make_gateway(app.state.http)


def get_signer() -> QRSigner:
    return app.state.signer


def get_notifier() -> Notifier:
    return Notifier(make_mailer(app.state.http))


def get_user_tokens() -> UserTokens:
    return user_tokens


def get_reconciler(
    records: Records = Depends(get_records),
    gateway: PaymentGateway = Depends(get_gateway),
    signer: QRSigner = Depends(get_signer),
    notifier: Notifier = Depends(get_notifier),
) -> Reconciler:
    return Reconciler(records=records, gateway=gateway, signer=signer,
                      notifier=notifier,
                      qr_expiry_days=config.QR_EXPIRY_DAYS)


def current_user(
    request: Request, tokens: UserTokens = Depends(get_user_tokens),
) -> str:
    auth = request.headers.get("authorization") or ""
    if not auth.startswith("Bearer "):
        raise HTTPException(401, detail="Unauthorized")
    try:
        return tokens.verify(auth[len("Bearer "):])
    except InvalidIdToken:
        raise HTTPException(401, detail="Invalid token")


def is_admin(request: Request) -> bool:
    return bool(request.session.get("admin_user"))


def require_admin(request: Request) -> None:
    if not is_admin(request):
        raise HTTPException(401, detail="admin login required")


# ---
# startup / shutdown
# ---
@app.on_event("startup")
async def _say_hello():
    print('\n' * 3)
    print('=' * 50)
    S = 'SQL' if config.STORE_BACKEND == 'sql' else 'Redis'
    print('Takshashila passes is starting up...')
    print(f'   - Cashfree environment: {config.CASHFREE_ENV}')
    print(f'   - Document store backend: {S}')
    print(f'   - Mail: {"Resend" if config.RESEND_API_KEY else "log only"}')
    print('=' * 50)
    print('\n' * 3)


@app.on_event("startup")
async def _signer_start():
    # fails startup without QR_SECRET_KEY
    app.state.signer = make_signer()


@app.on_event("startup")
async def _http_client_start():
    app.state.http = make_http()


@app.on_event("startup")
async def _store_start():
    app.state.docs, app.state.store_close = await open_store()


@app.on_event("shutdown")
async def _http_client_stop():
    http = getattr(app.state, "http", None)
    if http is not None:
        await http.aclose()
        app.state.http = None


@app.on_event("shutdown")
async def _store_stop():
    close = getattr(app.state, "store_close", None)
    if close is not None:
        await close()
        app.state.store_close = None


# ----------------------------
# Serialisation
# ----------------------------
def pass_json(pass_id: str, doc: Pass) -> dict:
    out = {
        "passId": pass_id,
        "userId": doc.get("user_id"),
        "passType": doc.get("pass_type"),
        "passName": display_name(doc.get("pass_type", "")),
        "amount": doc.get("amount"),
        "paymentId": doc.get("payment_id"),
        "status": doc.get("status"),
        "qrCode": doc.get("qr_code"),
        "createdAt": to_iso(doc.get("created_at")),
    }
    snapshot = doc.get("team_snapshot")
    if snapshot:
        out["teamId"] = doc.get("team_id")
        out["teamSnapshot"] = {
            "teamName": snapshot.get("team_name"),
            "totalMembers": snapshot.get("total_members"),
            "members": [
                {
                    "memberId": m.get("member_id"),
                    "name": m.get("name"),
                    "phone": m.get("phone"),
                    "isLeader": m.get("is_leader"),
                    "checkedIn": m.get("checked_in"),
                }
                for m in snapshot.get("members") or []
            ],
        }
    return out


def result_details(result: ReconcileResult) -> dict:
    return {
        "orderId": result.order_id,
        "userId": result.user_id,
        "passType": result.pass_type,
        "amount": result.amount,
    }


def order_payload(payload: dict) -> dict:
    """Client field names -> the ones create_order expects."""
    customer = payload.get("customer")
    team = payload.get("team") or payload.get("teamData")
    out = {
        "pass_type": payload.get("passType"),
        "amount": payload.get("amount"),
        "customer": customer if isinstance(customer, dict) else {},
    }
    if isinstance(team, dict):
        members = team.get("members")
        out["team"] = {
            "team_id": payload.get("teamId") or team.get("teamId"),
            "team_name": team.get("teamName") or "",
            "members": [
                {
                    "name": m.get("name"),
                    "phone": m.get("phone"),
                    "email": m.get("email"),
                    "is_leader": m.get("isLeader"),
                } if isinstance(m, dict) else m
                for m in members
            ] if isinstance(members, list) else members,
        }
    return out


# ----------------------------
# API: Orders
# ----------------------------
@app.post("/api/payment/create-order")
@limiter.limit(config.RATE_LIMIT)
async def api_create_order(
    request: Request,
    payload: dict,
    uid: str = Depends(current_user),
    records: Records = Depends(get_records),
    gateway: PaymentGateway = Depends(get_gateway),
):
    claimed = payload.get("userId")
    if claimed and claimed != uid:
        raise HTTPException(403, detail="Forbidden")
    try:
        created = await create_order(records, gateway, uid,
                                     order_payload(payload),
                                     currency=config.CURRENCY)
    except InvalidOrder as e:
        return error(400, str(e))
    except GatewayError as e:
        return error(500, "Failed to create order", details=e.message)
    return {
        "orderId": created["order_id"],
        "sessionId": created["session_id"],
        "teamId": created["team_id"],
    }


# ----------------------------
# API: Order status (polled by the callback page)
# ----------------------------
@app.get("/api/orders/{order_id}")
async def get_order(
    order_id: str,
    uid: str = Depends(current_user),
    records: Records = Depends(get_records),
):
    async with timeit("records.get_order"):
        payment = await records.payments.get(order_id)
    if payment is None or payment.get("user_id") != uid:
        raise HTTPException(404, detail="order not found")
    found = await records.passes.find_by_payment(order_id)
    return {
        "orderId": order_id,
        "status": payment.get("status"),
        "passType": payment.get("pass_type"),
        "amount": payment.get("amount"),
        "passId": found[0] if found else None,
        "createdAt": to_iso(payment.get("created_at")),
        "updatedAt": to_iso(payment.get("updated_at")),
    }


# ----------------------------
# Webhook: Cashfree
# ----------------------------
@app.post("/api/webhooks/cashfree")
async def cashfree_webhook(
    request: Request,
    gateway: PaymentGateway = Depends(get_gateway),
    rc: Reconciler = Depends(get_reconciler),
):
    raw = await request.body()
    try:
        event = read_webhook(gateway, request.headers, raw)
    except WebhookSignatureError:
        logger.warning("webhook rejected: signature mismatch")
        return error(401, "Invalid signature")
    except MalformedWebhook as e:
        return error(400, str(e))

    kind = event_kind(event)
    if kind != PAYMENT_SUCCESS_WEBHOOK:
        logger.info("webhook %s ignored", kind or "<untyped>")
        return {"ok": True, "ignored": kind}

    try:
        order_id = event_order_id(event)
    except MalformedWebhook as e:
        return error(400, str(e))

    try:
        result = await rc.settle(order_id, source="webhook")
    except PaymentRecordNotFound:
        # the gateway retries; the manual fixup covers the rest
        logger.warning("webhook for unknown order %s acknowledged", order_id)
        return {"ok": True, "pending": True}
    except Exception:
        logger.exception("webhook processing failed for %s", order_id)
        return error(500, "Processing failed")

    return {"ok": True, "passId": result.pass_id, "created": result.created}


# ----------------------------
# API: Client verify
# ----------------------------
@app.post("/api/payment/verify")
async def verify_payment(
    payload: dict,
    rc: Reconciler = Depends(get_reconciler),
):
    order_id = payload.get("orderId")
    if not order_id or not isinstance(order_id, str):
        return error(400, "Missing orderId")
    try:
        result = await rc.verify(order_id)
    except PaymentNotSuccessful as e:
        return error(400, "Payment not successful",
                     status=e.gateway_status, retry=True)
    except PaymentRecordNotFound:
        return error(404, "Payment record not found")
    except GatewayError as e:
        return error(500, "Payment verification failed", details=e.message)
    except Exception:
        logger.exception("verify failed for %s", order_id)
        return error(500, "Payment verification failed")

    out = {
        "success": True,
        "passId": result.pass_id,
        "qrCode": result.qr_code,
        "created": result.created,
    }
    if not result.created:
        out["message"] = "Pass already exists"
    return out


# ----------------------------
# API: Passes & profile
# ----------------------------
@app.get("/api/passes/{pass_id}")
async def get_pass(
    pass_id: str,
    uid: str = Depends(current_user),
    records: Records = Depends(get_records),
):
    doc = await records.passes.get(pass_id)
    if doc is None or doc.get("user_id") != uid:
        raise HTTPException(404, detail="pass not found")
    return pass_json(pass_id, doc)


@app.get("/api/users/passes")
async def list_user_passes(
    uid: str = Depends(current_user),
    records: Records = Depends(get_records),
):
    async with timeit("records.list_passes"):
        found = await records.passes.list_for_user(uid)
    return {"passes": [pass_json(pid, doc) for pid, doc in found]}


@app.put("/api/users/profile")
@limiter.limit(config.RATE_LIMIT)
async def update_profile(
    request: Request,
    payload: dict,
    uid: str = Depends(current_user),
    records: Records = Depends(get_records),
):
    fields = {}
    for key in ("name", "college"):
        if key in payload:
            fields[key] = str(payload.get(key) or "").strip()
    if "email" in payload:
        email = str(payload.get("email") or "").strip()
        if email and not is_valid_email(email):
            return error(400, "invalid email address")
        fields["email"] = email or None
    if "phone" in payload:
        phone = normalize_phone(payload.get("phone"))
        if phone is None:
            return error(400, "invalid phone number; must be at least 10 "
                              "digits")
        fields["phone"] = phone
    if not fields:
        return error(400, "nothing to update")
    profile = await records.users.upsert(uid, fields)
    return {"userId": uid, **{k: v for k, v in profile.items()
                              if k != "updated_at"}}


# ----------------------------
# Admin
# ----------------------------
@app.post("/api/admin/fix-stuck-payment")
async def fix_stuck_payment(
    payload: dict,
    _: None = Depends(require_admin),
    rc: Reconciler = Depends(get_reconciler),
):
    order_id = payload.get("orderId")
    if not order_id or not isinstance(order_id, str):
        return error(400, "Order ID is required")
    try:
        result = await rc.fix(order_id)
    except PaymentNotSuccessful as e:
        return error(400, "Payment not successful in Cashfree",
                     cashfreeStatus=e.gateway_status)
    except PaymentRecordNotFound:
        return error(404, "Payment record not found")
    except GatewayError as e:
        return error(500, "Cashfree lookup failed", details=e.message)
    except Exception as e:
        logger.exception("manual fix failed for %s", order_id)
        return error(500, "Fix failed", details=str(e))

    return {
        "success": True,
        "message": ("Pass created successfully" if result.created
                    else "Pass already exists"),
        "passId": result.pass_id,
        "qrCode": result.qr_code,
        "created": result.created,
        "teamAttached": result.team_attached,
        "notified": result.notified,
        "steps": result.steps,
        "details": result_details(result),
    }


@app.post("/api/passes/verify-qr")
async def verify_qr(
    payload: dict,
    _: None = Depends(require_admin),
    signer: QRSigner = Depends(get_signer),
    records: Records = Depends(get_records),
):
    qr_data = payload.get("qrData")
    if not qr_data or not isinstance(qr_data, str):
        return error(400, "Missing qrData")
    check = signer.read_qr_payload(qr_data)
    if not check.valid:
        return {"valid": False, "error": check.error}
    doc = await records.passes.get(check.pass_id)
    if doc is None:
        return {"valid": False, "error": "PassNotFound"}
    return {"valid": True, "pass": pass_json(check.pass_id, doc)}


@app.get("/api/admin/timings")
async def admin_timings(_: None = Depends(require_admin)):
    return {"timings": timings.summary()}


@app.post("/admin/login")
async def admin_login_post(
    request: Request,
    username: str = Form(...),
    password: str = Form(...),
):
    ok_user = ct_equal(username.strip(), config.ADMIN_USERNAME)
    # an unset admin password never matches
    ok_pass = bool(config.ADMIN_PASSWORD) and ct_equal(
        password, config.ADMIN_PASSWORD
    )
    if ok_user and ok_pass:
        request.session["admin_user"] = username.strip()
        return {"ok": True, "admin": username.strip()}
    return error(401, "Invalid credentials.")


@app.get("/admin/logout")
async def admin_logout(request: Request):
    request.session.clear()
    return {"ok": True}


@app.get("/health")
async def health(request: Request, detail: Optional[bool] = False):
    out = {"status": "ok"}
    if detail and is_admin(request):
        out["store"] = config.STORE_BACKEND
        out["cashfree"] = config.CASHFREE_ENV
    return out
