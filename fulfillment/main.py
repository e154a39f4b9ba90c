"""
FastAPI Application Entry Point

Order Fulfillment Service - customer intake, payment confirmation,
front-of-house and kitchen station surfaces over one order workflow.

Endpoints:
    - POST /api/orders: Customer order submission
    - GET /api/orders, GET/PATCH /api/orders/{id}: Front-of-house station
    - GET /api/kitchen/orders, GET/PATCH /api/kitchen/orders/{id}: Kitchen displays
    - POST /api/payments/create-intent, POST /api/payments/confirm: Payment
    - POST /webhook/stripe: Stripe payment webhook
    - GET /health: System health check
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, List, Optional

import redis
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from fulfillment.core.config import get_settings, setup_logging
from fulfillment.database import engine, get_db, init_db
from fulfillment.dependencies import (
    StationIdentity,
    get_gateway,
    get_payment_gate,
    get_workflow_service,
    require_boh_station,
    require_foh_station,
)
from fulfillment.errors import OrderValidationError, OutOfWorkflow, WorkflowError
from fulfillment.models import Order, OrderStatus
from fulfillment.schemas import (
    ErrorResponse,
    HealthResponse,
    OrderCreate,
    OrderCreateResponse,
    OrderListResponse,
    OrderResponse,
    PaymentConfirmRequest,
    PaymentIntentRequest,
    PaymentIntentResponse,
    StatusUpdate,
)
from fulfillment.services.payment import PaymentGateway, get_payment_gateway
from fulfillment.services.payment_gate import PaymentGate
from fulfillment.tasks import kitchen_ticket_payload, send_kitchen_ticket
from fulfillment.workflow.service import WorkflowService
from fulfillment.workflow.stations import BOH_CHANNEL

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Tip policy: {settings.order_management_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    await init_db()
    logger.info("Database initialized")

    gateway = get_payment_gateway()
    logger.info(f"Payment Gateway: {gateway.provider_name}")

    missing = settings.validate_production_config()
    if missing:
        logger.warning(f"Missing configuration: {missing}")

    logger.info("Application ready")

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await engine.dispose()
    logger.info("Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Order fulfillment workflow shared by the customer ordering flow, "
        "front-of-house staff and kitchen display stations."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    402: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def parse_status(value: Optional[str]) -> Optional[OrderStatus]:
    if value is None:
        return None
    try:
        return OrderStatus(value.lower())
    except ValueError:
        raise OrderValidationError(
            f"Invalid status. Options: {[s.value for s in OrderStatus]}"
        )


def enqueue_kitchen_ticket(order: Order) -> None:
    """Hand a confirmed order to the print worker; never fails the request."""
    try:
        send_kitchen_ticket.delay(kitchen_ticket_payload(order, settings.restaurant_name))
    except Exception as e:
        logger.error(f"Could not queue kitchen ticket for {order.order_number}: {e}")


async def apply_status_update(
    service: WorkflowService,
    order_id: str,
    body: StatusUpdate,
    station: StationIdentity,
) -> OrderResponse:
    order = await service.request_transition(
        order_id, body.status, station.role, actor_id=station.actor_id
    )
    if body.status == OrderStatus.CONFIRMED.value:
        enqueue_kitchen_ticket(order)
    return OrderResponse.model_validate(order)


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "restaurant": settings.restaurant_name,
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
) -> HealthResponse:
    """Verify all system components are operational."""

    # Check database
    db_status = "healthy"
    try:
        await db.execute(select(func.count()).select_from(Order))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    # Check Redis
    redis_status = "healthy"
    try:
        r = redis.Redis.from_url(settings.redis_url, socket_timeout=2)
        r.ping()
        r.close()
    except Exception as e:
        redis_status = f"unhealthy: {str(e)}"
        logger.error(f"Redis health check failed: {e}")

    # Check payment processor
    payment_status = "healthy" if await gateway.health_check() else "unhealthy"

    overall = "operational" if all(
        s == "healthy" for s in [db_status, redis_status, payment_status]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        redis=redis_status,
        payment_service=payment_status,
        timestamp=datetime.now(),
    )


# =============================================================================
# CUSTOMER ORDER INTAKE
# =============================================================================

@app.post(
    "/api/orders",
    response_model=OrderCreateResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Submit Order",
)
async def create_order(
    order_data: OrderCreate,
    service: WorkflowService = Depends(get_workflow_service),
) -> OrderCreateResponse:
    """
    Create a pending, unpaid order.

    Totals are computed server-side; the order enters the kitchen queue
    only after payment and front-of-house confirmation.
    """
    logger.info(f"Creating order for: {order_data.customer.name}")

    order = await service.create_order(
        items=[item.model_dump() for item in order_data.items],
        customer=order_data.customer.model_dump(),
        pickup_time=order_data.pickup_time,
        tip=order_data.tip,
        special_instructions=order_data.special_instructions,
    )
    return OrderCreateResponse(
        success=True,
        message="Order received",
        order=OrderResponse.model_validate(order),
    )


# =============================================================================
# FRONT-OF-HOUSE STATION
# =============================================================================

@app.get(
    "/api/orders",
    response_model=OrderListResponse,
    responses=ERROR_RESPONSES,
    tags=["Front of House"],
    summary="List Orders",
)
async def list_orders(
    status_filter: Optional[str] = Query(None, alias="status"),
    email: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    station: StationIdentity = Depends(require_foh_station),
    service: WorkflowService = Depends(get_workflow_service),
) -> OrderListResponse:
    """Newest orders first, optionally filtered by status or customer email."""
    orders = await service.list_orders(
        status_filter=parse_status(status_filter),
        customer_email=email,
        limit=limit,
    )
    return OrderListResponse(
        total=len(orders),
        orders=[OrderResponse.model_validate(order) for order in orders],
    )


@app.get(
    "/api/orders/{order_id}",
    response_model=OrderResponse,
    responses=ERROR_RESPONSES,
    tags=["Front of House"],
)
async def get_order(
    order_id: str,
    station: StationIdentity = Depends(require_foh_station),
    service: WorkflowService = Depends(get_workflow_service),
) -> OrderResponse:
    """Get a specific order by ID."""
    order = await service.get_order(order_id)
    return OrderResponse.model_validate(order)


@app.patch(
    "/api/orders/{order_id}",
    response_model=OrderResponse,
    responses=ERROR_RESPONSES,
    tags=["Front of House"],
    summary="Confirm, Complete or Cancel",
)
async def update_order_status(
    order_id: str,
    body: StatusUpdate,
    station: StationIdentity = Depends(require_foh_station),
    service: WorkflowService = Depends(get_workflow_service),
) -> OrderResponse:
    return await apply_status_update(service, order_id, body, station)


# =============================================================================
# KITCHEN DISPLAY STATIONS
# =============================================================================

@app.get(
    "/api/kitchen/orders",
    response_model=OrderListResponse,
    responses=ERROR_RESPONSES,
    tags=["Kitchen"],
    summary="Kitchen Queue",
)
async def list_kitchen_orders(
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    station: StationIdentity = Depends(require_boh_station),
    service: WorkflowService = Depends(get_workflow_service),
) -> OrderListResponse:
    """Orders the kitchen works on: confirmed through ready."""
    requested = parse_status(status_filter)
    if requested is not None and not BOH_CHANNEL.can_see(requested):
        raise OrderValidationError(
            f"Kitchen stations only see {sorted(s.value for s in BOH_CHANNEL.visible_statuses)}"
        )
    statuses: List[OrderStatus] = (
        [requested] if requested is not None else list(BOH_CHANNEL.visible_statuses)
    )
    orders = await service.list_orders(status_filter=statuses, limit=limit)
    return OrderListResponse(
        total=len(orders),
        orders=[OrderResponse.model_validate(order) for order in orders],
    )


@app.get(
    "/api/kitchen/orders/{order_id}",
    response_model=OrderResponse,
    responses=ERROR_RESPONSES,
    tags=["Kitchen"],
)
async def get_kitchen_order(
    order_id: str,
    station: StationIdentity = Depends(require_boh_station),
    service: WorkflowService = Depends(get_workflow_service),
) -> OrderResponse:
    order = await service.get_order(order_id)
    if not BOH_CHANNEL.can_see(order.status):
        raise OutOfWorkflow(
            f"order is {order.status.value} and not in the kitchen workflow",
            order_id=order_id,
        )
    return OrderResponse.model_validate(order)


@app.patch(
    "/api/kitchen/orders/{order_id}",
    response_model=OrderResponse,
    responses=ERROR_RESPONSES,
    tags=["Kitchen"],
    summary="Acknowledge, Start or Finish",
)
async def update_kitchen_order_status(
    order_id: str,
    body: StatusUpdate,
    station: StationIdentity = Depends(require_boh_station),
    service: WorkflowService = Depends(get_workflow_service),
) -> OrderResponse:
    return await apply_status_update(service, order_id, body, station)


# =============================================================================
# PAYMENT ENDPOINTS
# =============================================================================

@app.post(
    "/api/payments/create-intent",
    response_model=PaymentIntentResponse,
    responses=ERROR_RESPONSES,
    tags=["Payments"],
)
async def create_payment_intent(
    body: PaymentIntentRequest,
    gate: PaymentGate = Depends(get_payment_gate),
) -> PaymentIntentResponse:
    intent = await gate.create_payment_intent(body.order_id)
    return PaymentIntentResponse(
        client_secret=intent.client_secret,
        payment_reference=intent.reference,
        amount=intent.amount,
    )


@app.post(
    "/api/payments/confirm",
    response_model=OrderResponse,
    responses=ERROR_RESPONSES,
    tags=["Payments"],
)
async def confirm_payment(
    body: PaymentConfirmRequest,
    gate: PaymentGate = Depends(get_payment_gate),
) -> OrderResponse:
    """Record a payment the processor reports as succeeded."""
    order = await gate.confirm_payment(body.order_id, body.payment_reference)
    return OrderResponse.model_validate(order)


@app.post(
    "/webhook/stripe",
    tags=["Payments"],
    summary="Stripe Webhook Endpoint",
)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    gateway: PaymentGateway = Depends(get_gateway),
    gate: PaymentGate = Depends(get_payment_gate),
) -> dict[str, Any]:
    """
    Confirm payments Stripe reports as succeeded.

    Retryable failures return an error status so Stripe redelivers; other
    workflow errors are logged and acknowledged.
    """
    body = await request.body()
    event = await gateway.verify_webhook(body, stripe_signature or "")
    if event is None:
        raise HTTPException(status_code=400, detail="Invalid webhook signature")

    event_type = event.get("type", "unknown")
    logger.info(f"Stripe webhook received: {event_type}")
    if event_type != "payment_intent.succeeded":
        return {"received": True, "handled": False}

    intent = event.get("data", {}).get("object", {})
    order_id = (intent.get("metadata") or {}).get("order_id")
    if not order_id or not intent.get("id"):
        logger.warning(f"Stripe webhook {event_type} without an order id, ignoring")
        return {"received": True, "handled": False}

    try:
        await gate.confirm_payment(order_id, intent["id"])
    except WorkflowError as e:
        if e.retryable:
            raise
        logger.warning(f"Stripe webhook for order {order_id} not applied: {e.message}")
        return {"received": True, "handled": False, "error": e.code}

    return {"received": True, "handled": True}


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(WorkflowError)
async def workflow_exception_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    """Render workflow errors with their code and status."""
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )
