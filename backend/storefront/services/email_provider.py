"""
Order notification email

SendGrid over httpx when SENDGRID_API_KEY is set; a logging mock otherwise.
Sends are best-effort: callers schedule them in the background and a
failure never affects the order.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import httpx

from storefront.core.config import settings
from storefront.models.order import Order
from storefront.models.user import User

logger = logging.getLogger(__name__)


@dataclass
class SendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class EmailProvider(Protocol):
    """Protocol for email providers."""

    async def send_order_confirmation(self, order: Order, user: User) -> SendResult:
        ...


def order_email_data(order: Order, user: User) -> Dict[str, Any]:
    return {
        "store_name": settings.STORE_NAME,
        "customer_name": user.name,
        "order_number": order.order_number,
        "status": order.status,
        "payment_method": order.payment_method,
        "items": [
            {
                "title": item.title,
                "quantity": item.quantity,
                "price": str(item.price),
                "subtotal": str(item.subtotal),
            }
            for item in order.items
        ],
        "subtotal": str(order.subtotal),
        "discount": str(order.discount),
        "tax": str(order.tax),
        "shipping": str(order.shipping),
        "total": str(order.total),
        "currency": settings.CURRENCY,
    }


class SendGridProvider:
    """SendGrid transactional email."""

    BASE_URL = "https://api.sendgrid.com/v3"

    def __init__(self):
        self.api_key = settings.SENDGRID_API_KEY
        self.from_email = settings.SENDGRID_FROM_EMAIL
        self.from_name = settings.SENDGRID_FROM_NAME
        self.template_id = settings.SENDGRID_ORDER_CONFIRMATION_TEMPLATE
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=30.0,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
            )
        return self._http_client

    async def close(self):
        """Explicit cleanup method."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    def _build_payload(self, order: Order, user: User) -> Dict[str, Any]:
        to_email = order.customer_email or user.email
        data = order_email_data(order, user)
        payload: Dict[str, Any] = {
            "personalizations": [{
                "to": [{"email": to_email, "name": user.name or ""}],
                "dynamic_template_data": data,
            }],
            "from": {"email": self.from_email, "name": self.from_name},
        }
        if self.template_id:
            payload["template_id"] = self.template_id
        else:
            lines = "\n".join(
                f"- {item['title']} x{item['quantity']}: {item['subtotal']}" for item in data["items"]
            )
            payload["subject"] = f"{settings.STORE_NAME} order {order.order_number} confirmed"
            payload["content"] = [{
                "type": "text/plain",
                "value": (
                    f"Hi {user.name},\n\n"
                    f"Thanks for your order {order.order_number}.\n\n"
                    f"{lines}\n\n"
                    f"Total: {data['total']} {data['currency']}\n"
                ),
            }]
        return payload

    async def send_order_confirmation(self, order: Order, user: User) -> SendResult:
        if not self.api_key:
            logger.warning("SendGrid API key not configured")
            return SendResult(success=False, error="Email not configured")

        http = await self._get_http_client()
        try:
            resp = await http.post(f"{self.BASE_URL}/mail/send", json=self._build_payload(order, user))
        except httpx.HTTPError as e:
            logger.error(f"SendGrid send failed for order {order.order_number}: {e}")
            return SendResult(success=False, error=str(e))

        if resp.status_code in (200, 202):
            return SendResult(success=True, message_id=resp.headers.get("X-Message-Id"))

        logger.error(f"SendGrid send failed: {resp.status_code} - {resp.text}")
        return SendResult(success=False, error=f"HTTP {resp.status_code}")


class MockEmailProvider:
    """Mock provider for development/testing."""

    async def send_order_confirmation(self, order: Order, user: User) -> SendResult:
        logger.info(
            f"[MOCK EMAIL] Order confirmation to {order.customer_email or user.email}\n"
            f"  Order: {order.order_number}\n"
            f"  Items: {len(order.items)}\n"
            f"  Total: {order.total} {settings.CURRENCY}"
        )
        return SendResult(success=True, message_id="mock")


_email_provider: Optional[EmailProvider] = None


def get_email_provider() -> EmailProvider:
    """Configured provider singleton."""
    global _email_provider
    if _email_provider is None:
        _email_provider = SendGridProvider() if settings.SENDGRID_API_KEY else MockEmailProvider()
    return _email_provider


async def close_email_provider() -> None:
    if isinstance(_email_provider, SendGridProvider):
        await _email_provider.close()
