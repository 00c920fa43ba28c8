from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles
from pymongo.collection import Collection
from starlette.concurrency import run_in_threadpool

from course_pay.config import Settings
from course_pay.event_store import ProcessedPaymentStore, setup_database_connection
from course_pay.exceptions import (
    PaymentConfigurationError,
    PaymentProviderError,
    WebhookVerificationError,
)
from course_pay.fulfillment import CourseFulfillment
from course_pay.logger import app_logger, configure_logging, payment_logger, webhook_logger
from course_pay.models import (
    ConfirmPaymentRequest,
    CreatePaymentIntentResponse,
    HealthResponse,
    PaymentRequest,
    PaymentResult,
    PayPalPaymentRequest,
    WebhookEvent,
)
from course_pay.paypal_integration import PayPalBilling
from course_pay.stripe_integration import StripeBilling
from course_pay.utils import from_minor_units, to_minor_units, utc_timestamp
from course_pay.webhooks import WebhookDispatcher

# Load environment variables
load_dotenv()

pages_router = APIRouter()
stripe_router = APIRouter()
paypal_router = APIRouter()


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_stripe_billing(request: Request) -> StripeBilling:
    return request.app.state.stripe_billing


def get_paypal_billing(request: Request) -> PayPalBilling:
    return request.app.state.paypal_billing


def get_fulfillment(request: Request) -> CourseFulfillment:
    return request.app.state.fulfillment


def payment_failed(message: str, **extra) -> JSONResponse:
    """Uniform failure body for the confirmation endpoints."""
    return JSONResponse(status_code=400, content={"success": False, "error": message, **extra})


# Pages and health

@pages_router.get("/")
async def course_page(settings: Settings = Depends(get_settings)):
    """Serve the course sales page."""
    return FileResponse(settings.static_dir / "index.html")


@pages_router.get("/checkout")
async def checkout_page(settings: Settings = Depends(get_settings)):
    """Serve the checkout page."""
    return FileResponse(settings.static_dir / "checkout.html")


@pages_router.get("/health", response_model=HealthResponse)
async def health_check(settings: Settings = Depends(get_settings)):
    """Liveness probe. Never contacts a payment provider."""
    return HealthResponse(timestamp=utc_timestamp(), basePath=settings.health_base_path)


# Stripe

@stripe_router.post("/create-payment-intent", response_model=CreatePaymentIntentResponse)
def create_payment_intent(
    payment: PaymentRequest,
    idempotency_key: Optional[str] = Header(default=None),
    stripe_billing: StripeBilling = Depends(get_stripe_billing),
):
    """Create a Stripe PaymentIntent for the checkout page to confirm."""
    try:
        intent = stripe_billing.create_payment_intent(payment, idempotency_key)
    except (ValueError, PaymentProviderError) as e:
        payment_logger.warning(f"PaymentIntent creation failed for {payment.customer_email}: {e}")
        return JSONResponse(status_code=400, content={"error": {"message": str(e)}})

    return CreatePaymentIntentResponse(client_secret=intent.client_secret, payment_intent_id=intent.id)


@stripe_router.post("/confirm-payment", response_model=PaymentResult)
def confirm_payment(
    confirmation: ConfirmPaymentRequest,
    stripe_billing: StripeBilling = Depends(get_stripe_billing),
    fulfillment: CourseFulfillment = Depends(get_fulfillment),
):
    """Report success only when Stripe says the PaymentIntent succeeded."""
    try:
        intent = stripe_billing.retrieve_payment_intent(confirmation.payment_intent_id)
    except PaymentProviderError as e:
        return payment_failed(str(e))

    if not intent.succeeded:
        payment_logger.info(f"PaymentIntent {intent.id} not completed (status: {intent.status.value})")
        return payment_failed("Payment not completed", status=intent.status.value)

    fulfillment.grant_access(
        provider="stripe",
        resource_id=intent.id,
        source="confirm",
        customer_email=intent.customer_email,
        amount=intent.amount,
        currency=intent.currency,
    )
    return PaymentResult(
        transaction_id=intent.id,
        amount=from_minor_units(intent.amount, intent.currency),
        currency=intent.currency,
    )


@stripe_router.post("/webhook")
async def stripe_webhook(request: Request, stripe_signature: Optional[str] = Header(default=None)):
    """Receive Stripe events. The signature is checked before anything else."""
    payload = await request.body()
    webhook_logger.debug(f"{request.url.path}: {len(payload)} byte payload")
    try:
        event = get_stripe_billing(request).construct_event(payload, stripe_signature)
    except WebhookVerificationError as e:
        webhook_logger.warning(f"Stripe webhook rejected: {e}")
        return PlainTextResponse("Webhook Error", status_code=400)

    return await dispatch_event(request, event)


# PayPal

@paypal_router.post("/paypal-payment-success", response_model=PaymentResult)
def paypal_payment_success(
    approval: PayPalPaymentRequest,
    paypal_billing: PayPalBilling = Depends(get_paypal_billing),
    fulfillment: CourseFulfillment = Depends(get_fulfillment),
):
    """
    Confirm a PayPal checkout reported by the browser.

    The browser's claim is only a hint: the order is fetched from PayPal and
    must be COMPLETED, and must match the claimed amount when one is sent.
    """
    order_id = approval.lookup_id
    if not order_id:
        return payment_failed("orderID is required")

    try:
        order = paypal_billing.get_order(order_id)
    except PaymentProviderError as e:
        return payment_failed(str(e))

    if not order.succeeded:
        payment_logger.info(f"PayPal order {order.id} not completed (status: {order.status.value})")
        return payment_failed("Payment not completed", status=order.status.value)

    if approval.amount is not None:
        try:
            claimed = to_minor_units(approval.amount, approval.currency)
        except ValueError as e:
            return payment_failed(str(e))
        if claimed != order.amount or approval.currency.lower() != order.currency:
            payment_logger.warning(
                f"PayPal order {order.id} amount mismatch: client claimed "
                f"{approval.amount} {approval.currency}, PayPal reports {order.amount} {order.currency}"
            )
            return payment_failed("Payment amount does not match order")

    payment_logger.info(
        f"PayPal payment succeeded: order={order.id} payer={approval.payer_id} "
        f"customer={approval.customer_email} ({approval.customer_name})"
    )
    fulfillment.grant_access(
        provider="paypal",
        resource_id=order.id,
        source="paypal-success",
        customer_email=approval.customer_email or order.customer_email,
        amount=order.amount,
        currency=order.currency,
    )
    return PaymentResult(
        transaction_id=order.id,
        amount=from_minor_units(order.amount, order.currency),
        currency=order.currency.upper(),
    )


@paypal_router.post("/paypal-webhook")
async def paypal_webhook(request: Request):
    """Receive PayPal events, verified through PayPal's own API."""
    payload = await request.body()
    webhook_logger.debug(f"{request.url.path}: {len(payload)} byte payload")
    try:
        event = await run_in_threadpool(get_paypal_billing(request).verify_webhook, request.headers, payload)
    except WebhookVerificationError as e:
        webhook_logger.warning(f"PayPal webhook rejected: {e}")
        return PlainTextResponse("Webhook Error", status_code=400)

    return await dispatch_event(request, event)


async def dispatch_event(request: Request, event: WebhookEvent):
    """Acknowledge a verified event once its handler has run."""
    dispatcher: WebhookDispatcher = request.app.state.dispatcher
    try:
        await run_in_threadpool(dispatcher.dispatch, event)
    except Exception as e:
        # Non-2xx makes the provider redeliver; handlers are idempotent
        webhook_logger.error(f"Failed to process {event.provider} webhook {event.type}", error=e)
        return JSONResponse(status_code=500, content={"received": False})

    return {"received": True}


# Application

async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ())[1:])
        message = f"{field}: {first.get('msg')}" if field else first.get("msg")
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content={"success": False, "error": {"message": message}})


async def configuration_exception_handler(request: Request, exc: PaymentConfigurationError):
    app_logger.error("Payment provider is not configured", error=exc)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": {"message": "Payment system not properly configured"}},
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    app_logger.error(f"Unhandled error on {request.method} {request.url.path}", error=exc)
    return JSONResponse(status_code=500, content={"success": False, "error": {"message": "Internal server error"}})


def create_app(
    settings: Optional[Settings] = None,
    payments_collection: Optional[Collection] = None,
    stripe_billing: Optional[StripeBilling] = None,
    paypal_billing: Optional[PayPalBilling] = None,
) -> FastAPI:
    """
    Build the payment server.

    Args:
        settings: Configuration; read from the environment when omitted
        payments_collection: MongoDB collection for processed payments
        stripe_billing: Stripe client, built from settings when omitted
        paypal_billing: PayPal client, built from settings when omitted

    Returns:
        FastAPI: The configured application
    """
    settings = settings or Settings()
    configure_logging(settings.log_level)

    if payments_collection is None:
        payments_collection = setup_database_connection(settings)
    store = ProcessedPaymentStore(payments_collection)
    fulfillment = CourseFulfillment(store, settings.course_name)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handles startup and shutdown events."""
        try:
            await run_in_threadpool(store.ensure_indexes)
        except Exception as e:
            app_logger.critical("Failed to initialize services", error=e)
            raise

        local_url = f"http://localhost:{settings.port}{settings.base_path}"
        app_logger.info(f"Payment server running on {local_url}")
        app_logger.info(f"Course page: {local_url}/")
        app_logger.info(f"Checkout page: {local_url}/checkout")
        app_logger.info(f"Enabled payment providers: {', '.join(settings.enabled_providers) or 'none'}")

        yield

        app_logger.info("Application shutdown")

    app = FastAPI(
        title=settings.APP_TITLE,
        description=settings.APP_DESCRIPTION,
        version=settings.VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=settings.ALLOW_CREDENTIALS,
        allow_methods=settings.ALLOWED_METHODS,
        allow_headers=settings.ALLOWED_HEADERS,
    )

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(PaymentConfigurationError, configuration_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.state.settings = settings
    app.state.fulfillment = fulfillment
    app.state.dispatcher = WebhookDispatcher(fulfillment)

    prefix = settings.base_path
    app.include_router(pages_router, prefix=prefix)

    if settings.provider_enabled("stripe"):
        app.state.stripe_billing = stripe_billing or StripeBilling(settings)
        app.state.stripe_billing.validate_configuration()
        app.include_router(stripe_router, prefix=prefix)

    if settings.provider_enabled("paypal"):
        app.state.paypal_billing = paypal_billing or PayPalBilling(settings)
        app.state.paypal_billing.validate_configuration()
        app.include_router(paypal_router, prefix=prefix)

    # Page assets; registered last so API routes take precedence
    app.mount(prefix or "/", StaticFiles(directory=settings.static_dir), name="static")

    return app


def run():
    """Console entry point."""
    settings = Settings()
    import uvicorn
    uvicorn.run(
        "course_pay.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
    )


if __name__ == "__main__":
    run()
