"""Payment gateway contract and the Stripe manual-capture adapter."""

from __future__ import annotations

import asyncio
import functools
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any, Protocol

import stripe

from task_market_service.core.exceptions import ServiceError
from task_market_service.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

# Currencies whose smallest unit is the whole unit.
_ZERO_DECIMAL_CURRENCIES = frozenset(
    {
        "bif",
        "clp",
        "djf",
        "gnf",
        "jpy",
        "kmf",
        "krw",
        "mga",
        "pyg",
        "rwf",
        "ugx",
        "vnd",
        "vuv",
        "xaf",
        "xof",
        "xpf",
    }
)


class PaymentGateway(Protocol):
    """
    Contract for an authorize/capture/void payment processor.

    Amounts are decimal currency units. Capture and void on a reference that
    already reached that terminal state succeed without side effect.
    """

    async def authorize(
        self,
        amount: Decimal,
        task_id: str,
        customer_id: str,
        tasker_id: str,
    ) -> str: ...

    async def capture(self, hold_ref: str) -> bool: ...

    async def void(self, hold_ref: str) -> bool: ...

    async def close(self) -> None: ...


def to_minor_units(amount: Decimal, currency: str) -> int:
    """Convert a decimal amount to the processor's integer minor unit (half-up)."""
    if currency.lower() in _ZERO_DECIMAL_CURRENCIES:
        return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class StripePaymentGateway:
    """
    Stripe adapter using PaymentIntents with ``capture_method=manual``.

    authorize  -> PaymentIntent.create (funds held, not charged)
    capture    -> PaymentIntent.capture
    void       -> PaymentIntent.cancel

    The SDK is synchronous, so every call runs in a worker thread under
    ``asyncio.wait_for``. Errors surface as ``upstream_failure`` (502).
    """

    def __init__(
        self,
        api_key: str,
        currency: str,
        timeout_seconds: int,
        stripe_client: Any = stripe,
    ) -> None:
        self._api_key = api_key
        self._currency = currency.lower()
        self._timeout_seconds = timeout_seconds
        self._stripe = stripe_client
        self._logger = get_logger(__name__)

    async def _call(self, func: Callable[..., Any], /, **kwargs: Any) -> Any:
        call = functools.partial(func, api_key=self._api_key, **kwargs)
        return await asyncio.wait_for(asyncio.to_thread(call), timeout=self._timeout_seconds)

    def _failure(self, operation: str, exc: BaseException, **details: Any) -> ServiceError:
        self._logger.warning(
            "Payment processor call failed",
            extra={
                "operation": operation,
                "error": str(exc),
                "error_type": type(exc).__name__,
                **details,
            },
        )
        return ServiceError(
            "upstream_failure",
            f"Payment processor {operation} failed",
            502,
            details,
        )

    async def authorize(
        self,
        amount: Decimal,
        task_id: str,
        customer_id: str,
        tasker_id: str,
    ) -> str:
        """Place a hold for ``amount`` and return the PaymentIntent id."""
        try:
            intent = await self._call(
                self._stripe.PaymentIntent.create,
                amount=to_minor_units(amount, self._currency),
                currency=self._currency,
                capture_method="manual",
                payment_method_types=["card"],
                description=f"Task {task_id}",
                metadata={
                    "taskId": task_id,
                    "customerId": customer_id,
                    "taskerId": tasker_id,
                    "originalAmount": str(amount),
                },
                idempotency_key=f"authorize-{task_id}-{tasker_id}",
            )
        except (stripe.StripeError, TimeoutError) as exc:
            raise self._failure("authorize", exc, task_id=task_id) from exc

        hold_ref = str(intent["id"])
        self._logger.info(
            "Payment authorized",
            extra={"task_id": task_id, "hold_ref": hold_ref, "amount": str(amount)},
        )
        return hold_ref

    async def _settle(
        self,
        operation: str,
        func: Callable[..., Any],
        hold_ref: str,
        done: str,
    ) -> bool:
        try:
            await self._call(func, intent=hold_ref, idempotency_key=f"{operation}-{hold_ref}")
        except (stripe.StripeError, TimeoutError) as exc:
            # Already settled by an earlier attempt counts as success.
            if await self._intent_status(hold_ref) == done:
                self._logger.info(
                    "Payment already settled",
                    extra={"operation": operation, "hold_ref": hold_ref},
                )
                return True
            raise self._failure(operation, exc, hold_ref=hold_ref) from exc
        return True

    async def _intent_status(self, hold_ref: str) -> str | None:
        try:
            intent = await self._call(self._stripe.PaymentIntent.retrieve, id=hold_ref)
        except (stripe.StripeError, TimeoutError):
            return None
        return str(intent["status"])

    async def capture(self, hold_ref: str) -> bool:
        """Capture a held PaymentIntent."""
        return await self._settle("capture", self._stripe.PaymentIntent.capture, hold_ref, "succeeded")

    async def void(self, hold_ref: str) -> bool:
        """Cancel a held PaymentIntent, releasing the funds."""
        return await self._settle("void", self._stripe.PaymentIntent.cancel, hold_ref, "canceled")

    async def close(self) -> None:
        """Nothing to release; the SDK holds no per-instance connection."""
