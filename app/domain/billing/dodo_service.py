"""Dodo Payments service - checkout sessions for booking payments"""

import asyncio
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from dodopayments import (  # type: ignore
    APIConnectionError,
    AsyncDodoPayments,
    InternalServerError,
    RateLimitError,
)
from fastapi import Request

from ...config import (
    DODO_ADHOC_PRODUCT_ID,
    DODO_PAYMENTS_API_KEY,
    DODO_PAYMENTS_ENVIRONMENT,
    FRONTEND_URL,
    PAYMENT_MAX_ATTEMPTS,
    PAYMENT_RETRY_BACKOFF_SECONDS,
    PAYMENT_TIMEOUT_SECONDS,
)
from ...errors import ConfigurationError, ExternalServiceError

logger = logging.getLogger(__name__)

# Errors worth another attempt; anything else (bad request, auth) fails immediately
TRANSIENT_ERRORS = (asyncio.TimeoutError, APIConnectionError, RateLimitError, InternalServerError)


def normalize_dodo_environment(env: Optional[str]) -> str:
    """Normalize Dodo environment value to expected format"""
    value = (env or "test_mode").strip().lower()
    if value in {"live", "production", "prod"}:
        return "live_mode"
    if value in {"test", "sandbox", "staging", "dev", "development"}:
        return "test_mode"
    if value in {"test_mode", "live_mode"}:
        return value
    logger.warning(f"Unknown DODO environment '{env}', defaulting to test_mode")
    return "test_mode"


def to_minor_units(amount: Decimal) -> int:
    """GBP to pence"""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _read(obj, field: str):
    value = getattr(obj, field, None)
    if value is None and isinstance(obj, dict):
        value = obj.get(field)
    return value


class DodoPaymentsService:
    """
    Payment collaborator for booking checkouts.

    Built once at application startup and handed to request handlers through
    ``get_payment_service``. Calls are bounded by a timeout and retried a
    limited number of times on transient failures.
    """

    def __init__(
        self,
        api_key: Optional[str] = DODO_PAYMENTS_API_KEY,
        environment: Optional[str] = DODO_PAYMENTS_ENVIRONMENT,
        product_id: Optional[str] = DODO_ADHOC_PRODUCT_ID,
        timeout_seconds: float = PAYMENT_TIMEOUT_SECONDS,
        max_attempts: int = PAYMENT_MAX_ATTEMPTS,
        backoff_seconds: float = PAYMENT_RETRY_BACKOFF_SECONDS,
    ):
        self.environment = normalize_dodo_environment(environment)
        self.product_id = product_id
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.client = None

        if not api_key:
            logger.warning(
                "DODO_PAYMENTS_API_KEY not set; booking checkout will fail until configured"
            )
            return

        try:
            # SDK retries off; _call_with_retry owns retries and timeouts
            self.client = AsyncDodoPayments(
                bearer_token=api_key,
                environment=self.environment,
                max_retries=0,
            )
            logger.info(f"Dodo Payments client initialized (env={self.environment})")
        except Exception as e:
            logger.error(f"Failed to initialize Dodo client (env={self.environment}): {e}")
            self.client = None

    def is_available(self) -> bool:
        return self.client is not None and bool(self.product_id)

    async def close(self):
        if self.client is not None:
            await self.client.close()

    async def _call_with_retry(self, operation: str, factory):
        last_error = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await asyncio.wait_for(factory(), timeout=self.timeout_seconds)
            except TRANSIENT_ERRORS as e:
                last_error = e
                logger.warning(
                    f"{operation} attempt {attempt}/{self.max_attempts} failed: {type(e).__name__}"
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.backoff_seconds * attempt)
            except Exception as e:
                logger.error(f"{operation} failed: {e}")
                raise ExternalServiceError(
                    "Payment provider rejected the request", code="payment_provider_error"
                ) from e

        raise ExternalServiceError(
            "Payment provider unavailable, please try again",
            code="payment_provider_unavailable",
        ) from last_error

    async def create_booking_checkout(
        self,
        booking_id: int,
        washer_id: Optional[int],
        total_price: Decimal,
        customer_email: str,
        customer_name: Optional[str] = None,
    ) -> dict:
        """
        Open a checkout session charging total_price for a booking.

        Returns {"session_id", "checkout_url"}. The booking id travels in the
        session metadata so the payment webhook can find the booking again.
        """
        if not self.is_available():
            raise ConfigurationError(
                "Payments are not configured", code="payments_not_configured"
            )

        metadata = {"booking_id": str(booking_id), "type": "booking"}
        if washer_id is not None:
            metadata["washer_id"] = str(washer_id)

        customer = {"email": customer_email}
        if customer_name:
            customer["name"] = customer_name

        async def create():
            return await self.client.checkout_sessions.create(
                product_cart=[
                    {
                        "product_id": self.product_id,
                        "quantity": 1,
                        "amount": to_minor_units(total_price),
                    }
                ],
                customer=customer,
                metadata=metadata,
                return_url=f"{FRONTEND_URL}/bookings/{booking_id}?payment=success",
            )

        session = await self._call_with_retry(f"Checkout for booking {booking_id}", create)

        checkout_url = _read(session, "checkout_url")
        session_id = _read(session, "session_id")
        if not checkout_url:
            raise ExternalServiceError(
                "Payment provider returned no checkout URL", code="payment_provider_error"
            )
        logger.info(f"Checkout session {session_id} created for booking {booking_id}")
        return {"session_id": session_id, "checkout_url": checkout_url}


def get_payment_service(request: Request) -> DodoPaymentsService:
    """FastAPI dependency returning the service built during startup"""
    service = getattr(request.app.state, "payment_service", None)
    if service is None:
        raise ConfigurationError("Payment service not initialised", code="payments_not_configured")
    return service
