"""Clients for the payment processor and the push notification gateway."""

from task_market_service.clients.payment_gateway import PaymentGateway, StripePaymentGateway
from task_market_service.clients.push_client import HttpPushClient, LogPushClient, PushClient

__all__ = [
    "HttpPushClient",
    "LogPushClient",
    "PaymentGateway",
    "PushClient",
    "StripePaymentGateway",
]
