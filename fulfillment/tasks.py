"""
Celery Tasks
Kitchen ticket handoff to the print service, run outside the request.
"""

import logging
import time
from datetime import datetime
from typing import Optional

import httpx

from fulfillment.celery_worker import celery_app
from fulfillment.core.config import get_settings
from fulfillment.models import Order

logger = logging.getLogger(__name__)


def kitchen_ticket_payload(order: Order, restaurant_name: Optional[str] = None) -> dict:
    """JSON-safe ticket for the kitchen printer."""
    return {
        'restaurant_name': restaurant_name or get_settings().restaurant_name,
        'order_id': order.id,
        'order_number': order.order_number,
        'customer_name': order.customer_name,
        'pickup_time': order.pickup_time.isoformat() if order.pickup_time else None,
        'special_instructions': order.special_instructions,
        'confirmed_at': order.confirmed_at.isoformat() if order.confirmed_at else None,
        'items': [
            {
                'name': item.name,
                'quantity': item.quantity,
                'modifiers': item.modifiers or [],
                'special_instructions': item.special_instructions,
            }
            for item in order.items
        ],
    }


@celery_app.task(
    bind=True,
    max_retries=5,
    default_retry_delay=5,
    autoretry_for=(httpx.HTTPError,),
    retry_backoff=True
)
def send_kitchen_ticket(self, ticket: dict) -> dict:
    """
    POST a confirmed order's ticket to the print service.

    Connection failures and 5xx/4xx responses raise and are retried with
    backoff. With no PRINT_SERVICE_URL configured the task does nothing.
    """
    settings = get_settings()
    task_id = self.request.id
    order_number = ticket.get('order_number', 'unknown')

    if not settings.print_service_url:
        logger.info(f"Task {task_id}: no print service configured, skipping {order_number}")
        return {'success': False, 'skipped': True, 'order_number': order_number}

    start_time = time.time()
    response = httpx.post(
        settings.print_service_url,
        json=ticket,
        timeout=settings.print_timeout_seconds,
    )
    response.raise_for_status()

    elapsed = round(time.time() - start_time, 3)
    logger.info(f"Task {task_id}: ticket for {order_number} printed in {elapsed}s")
    return {
        'success': True,
        'skipped': False,
        'order_number': order_number,
        'status_code': response.status_code,
        'task_id': task_id,
        'processing_time_seconds': elapsed,
    }


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        'status': 'healthy',
        'worker': 'celery',
        'timestamp': datetime.now().isoformat()
    }
