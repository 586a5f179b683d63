"""
VINVAULT: Report API

Routes:
  POST /api/report                  fulfil a report (cache → entitlement → live fetch)
  GET  /api/credits[/{user_id}]     credit balance
  GET  /api/credits/{user_id}/ledger
  POST /api/create-checkout-session
  POST /api/checkout/finalize       credit a paid session after redirect
  POST /api/stripe-webhook          signed Stripe events
  POST /api/share                   24h share link for a cached report
  GET  /view/{token}                open a share link

Billing-relevant work runs in the threadpool (plain def routes) so one
slow upstream fetch does not stall other requests.
"""

import asyncio
import logging

from fastapi import BackgroundTasks, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, Response
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.concurrency import run_in_threadpool

from vinvault import __version__, config
from vinvault.core.decoder import DecodedReport, HtmlContent, PdfContent, decode
from vinvault.core.errors import FulfillmentError, ProviderError
from vinvault.core.provider import ReportProvider
from vinvault.server.auth import get_optional_user_id, require_user_id
from vinvault.server.models import CheckoutRequest, FinalizeRequest, ReportRequest, ShareRequest
from vinvault.server.services import Services, build_services

log = logging.getLogger(__name__)

# ── Rate Limiter ────────────────────────────────────────────────────

limiter = Limiter(key_func=get_remote_address, default_limits=["200/15minutes"])

# ── App ──────────────────────────────────────────────────────────────

app = FastAPI(
    title="VinVault Report API",
    version=__version__,
    description="Pay-per-view vehicle history reports",
)

app.state.limiter = limiter
app.state.services = None
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Stripe-Signature"],
    expose_headers=["Content-Disposition"],
)


def get_services(request: Request) -> Services:
    services = request.app.state.services
    if services is None:
        services = build_services()
        request.app.state.services = services
    return services


@app.exception_handler(FulfillmentError)
async def fulfillment_error_handler(request: Request, exc: FulfillmentError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    log.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "server_error", "detail": "Something went wrong. Contact support."},
    )


# ── Startup / share-token purge ─────────────────────────────────────

async def _purge_share_tokens_forever() -> None:
    while True:
        await asyncio.sleep(config.SHARE_PURGE_INTERVAL_SEC)
        services = app.state.services
        if services is None:
            continue
        try:
            await run_in_threadpool(services.shares.purge_expired)
        except Exception as e:
            log.warning("Share token purge failed: %s", e)


@app.on_event("startup")
async def startup():
    if app.state.services is None:
        app.state.services = build_services()
        log.info("VinVault started: db=%s stripe_mode=%s", config.DB_PATH, config.STRIPE_MODE)
    app.state.purge_task = asyncio.create_task(_purge_share_tokens_forever())


@app.on_event("shutdown")
async def shutdown():
    task = getattr(app.state, "purge_task", None)
    if task is not None:
        task.cancel()


@app.get("/health")
async def health():
    return {"ok": True, "version": __version__}


# ── Report rendering ────────────────────────────────────────────────

def _pdf_response(data: bytes, vin: str, report_type: str, disposition: str) -> Response:
    return Response(
        content=data,
        media_type="application/pdf",
        headers={"Content-Disposition": f'{disposition}; filename="{vin}-{report_type}.pdf"'},
    )


def render_report(
    content: DecodedReport,
    vin: str,
    report_type: str,
    output_format: str,
    provider: ReportProvider,
) -> Response:
    if output_format == "pdf":
        if isinstance(content, PdfContent):
            return _pdf_response(content.data, vin, report_type, "attachment")
        if isinstance(content, HtmlContent):
            try:
                pdf = provider.render_pdf(content.text, vin, report_type)
            except ProviderError as e:
                log.error("PDF conversion failed vin=%s: %s", vin, e)
                raise FulfillmentError.provider_error("Could not generate PDF from this report.") from e
            return _pdf_response(pdf, vin, report_type, "attachment")
        raise FulfillmentError.unsupported_content()

    if isinstance(content, HtmlContent):
        return HTMLResponse(content=content.text)
    if isinstance(content, PdfContent):
        return _pdf_response(content.data, vin, report_type, "inline")
    raise FulfillmentError.unsupported_content()


# ── POST /api/report ────────────────────────────────────────────────

@app.post("/api/report")
@limiter.limit("60/minute")
def get_report(body: ReportRequest, request: Request):
    services = get_services(request)
    user_id = get_optional_user_id(request, services.jwt_secret)
    result = services.gate.fulfill(body.to_fulfillment(user_id))
    response = render_report(
        result.content, result.vin, result.report_type, body.output_format, services.provider,
    )
    response.headers["X-Report-Source"] = result.source
    if result.entitlement is not None and result.entitlement.balance_after is not None:
        response.headers["X-Credits-Remaining"] = str(result.entitlement.balance_after)
    return response


# ── Credits ─────────────────────────────────────────────────────────

@app.get("/api/credits")
def my_credits(request: Request):
    services = get_services(request)
    user_id = require_user_id(request, services.jwt_secret)
    return {"user_id": user_id, "balance": services.credits.get_balance(user_id)}


@app.get("/api/credits/{user_id}")
def user_credits(user_id: str, request: Request):
    services = get_services(request)
    return {"balance": services.credits.get_balance(user_id)}


@app.get("/api/credits/{user_id}/ledger")
def user_ledger(user_id: str, request: Request, limit: int = 100):
    services = get_services(request)
    caller = require_user_id(request, services.jwt_secret)
    if caller != user_id:
        raise HTTPException(status_code=403, detail="Not your ledger.")
    return {
        "balance": services.credits.get_balance(user_id),
        "entries": services.credits.entries(user_id, limit=min(max(limit, 1), 500)),
    }


# ── Checkout ────────────────────────────────────────────────────────

@app.post("/api/create-checkout-session")
@limiter.limit("20/minute")
def create_checkout_session(body: CheckoutRequest, request: Request):
    services = get_services(request)
    user_id = get_optional_user_id(request, services.jwt_secret) or body.user_id
    session = services.checkout.create_checkout(
        body.price_id, user_id=user_id, vin=body.vin, report_type=body.report_type,
    )
    return {
        "checkoutUrl": session["checkout_url"],
        "url": session["checkout_url"],
        "sessionId": session["session_id"],
    }


@app.post("/api/checkout/finalize")
@limiter.limit("20/minute")
def finalize_checkout(body: FinalizeRequest, request: Request, background_tasks: BackgroundTasks):
    services = get_services(request)
    result = services.checkout.finalize(body.session_id, schedule=background_tasks.add_task)
    return {"ok": True, **result.to_dict()}


@app.post("/api/stripe-webhook")
async def stripe_webhook(request: Request, background_tasks: BackgroundTasks):
    """Stripe webhook. Duplicate deliveries are acknowledged with 200 and change nothing."""
    payload = await request.body()
    sig = request.headers.get("stripe-signature", "")
    services = get_services(request)
    return await run_in_threadpool(
        services.checkout.handle_webhook, payload, sig, background_tasks.add_task,
    )


# ── Share links ─────────────────────────────────────────────────────

@app.post("/api/share")
@limiter.limit("30/minute")
def create_share_link(body: ShareRequest, request: Request):
    services = get_services(request)
    token = services.shares.issue(body.vin, body.report_type)
    return {
        "url": f"{services.site_url}/view/{token.token}",
        "expiresAt": token.expires_at_iso,
    }


@app.get("/view/{token}")
def view_shared_report(token: str, request: Request):
    services = get_services(request)
    entry = services.shares.resolve(token)
    return render_report(decode(entry.payload), entry.vin, entry.report_type, "html", services.provider)
