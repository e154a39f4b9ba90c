"""
FastAPI Dependencies

Station credentials, service construction and the payment gateway, all
resolved per request. Routes receive an already-resolved StationIdentity;
business logic never looks at headers or environment flags.
"""

import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.core.config import Settings, get_settings
from fulfillment.database import get_db
from fulfillment.models import ActorRole
from fulfillment.services.payment import PaymentGateway, get_payment_gateway
from fulfillment.services.payment_gate import PaymentGate
from fulfillment.workflow.service import WorkflowService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StationIdentity:
    role: ActorRole
    actor_id: Optional[str] = None


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def require_foh_station(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> StationIdentity:
    """Resolve a front-of-house staff token to a station identity."""
    token = _bearer_token(authorization)
    if token is None:
        raise _unauthorized("Staff credentials required")

    for known, staff_id in settings.foh_staff_directory.items():
        if hmac.compare_digest(token.encode(), known.encode()):
            return StationIdentity(role=ActorRole.FOH, actor_id=staff_id)

    logger.warning("Rejected FOH request with an unknown staff token")
    raise _unauthorized("Invalid staff credentials")


def require_boh_station(
    authorization: Optional[str] = Header(None),
    x_station_id: Optional[str] = Header(None, alias="X-Station-Id"),
    settings: Settings = Depends(get_settings),
) -> StationIdentity:
    """
    Resolve a kitchen display device.

    Devices share KITCHEN_API_TOKEN; an optional X-Station-Id header names
    the device in the audit log.
    """
    token = _bearer_token(authorization)
    if token is None:
        raise _unauthorized("Kitchen credentials required")

    expected = settings.kitchen_api_token
    if not expected or not hmac.compare_digest(token.encode(), expected.encode()):
        logger.warning("Rejected kitchen request with an invalid token")
        raise _unauthorized("Invalid kitchen credentials")

    return StationIdentity(role=ActorRole.BOH, actor_id=x_station_id)


def get_gateway() -> PaymentGateway:
    return get_payment_gateway()


def get_workflow_service(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> WorkflowService:
    return WorkflowService(db, settings=settings)


def get_payment_gate(
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
) -> PaymentGate:
    return PaymentGate(db, gateway)
