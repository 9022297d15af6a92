"""
Payment collaborator.
Creates a payable reference (checkout URL or PIX copy-paste code) for a booking
and looks up the provider's status for a reference on demand.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

import httpx

from clinicbook.core import config
from clinicbook.scheduling.entities import Booking, PaymentStatus
from clinicbook.scheduling.errors import PaymentProviderError

logger = logging.getLogger(__name__)

# Provider billing statuses; anything unlisted is still awaiting payment.
PROVIDER_STATUSES = {
    "PAID": PaymentStatus.PAID,
    "EXPIRED": PaymentStatus.EXPIRED,
    "CANCELLED": PaymentStatus.FAILED,
    "REFUNDED": PaymentStatus.FAILED,
    "FAILED": PaymentStatus.FAILED,
    "PENDING": PaymentStatus.PENDING,
}


@dataclass(frozen=True)
class PaymentIntent:
    reference: str
    url: str | None = None
    pix_code: str | None = None
    pix_qr_code: str | None = None
    expires_at: datetime | None = None


class PaymentGateway(Protocol):
    def create_payment_intent(self, booking: Booking, description: str) -> PaymentIntent: ...

    def get_payment_status(self, reference: str) -> PaymentStatus: ...


def _parse_expiry(value: Any) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparseable payment expiry: %s", value)
        return None


class PixBillingGateway:
    """One-time billing over the PIX billing HTTP API."""

    def __init__(
        self,
        api_url: str = config.PAYMENT_API_URL,
        api_key: str = config.PAYMENT_API_KEY,
        *,
        methods: list[str] | None = None,
        return_url: str = config.PUBLIC_APP_URL,
        timeout: float = config.PAYMENT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.methods = methods or list(config.PAYMENT_METHODS)
        self.return_url = return_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _build_billing(self, booking: Booking, description: str) -> dict:
        success_url = f"{self.return_url}/agendamento-sucesso?appointment_id={booking.id}"
        return {
            "frequency": "ONE_TIME",
            "methods": self.methods,
            "products": [
                {
                    "externalId": str(booking.id),
                    "name": description,
                    "description": (
                        f"{description} on {booking.date.isoformat()} at {booking.time.strftime('%H:%M')}"
                    ),
                    "quantity": 1,
                    "price": booking.amount_cents,
                }
            ],
            "metadata": {"appointment_id": str(booking.id)},
            "returnUrl": success_url,
            "completionUrl": success_url,
        }

    def create_payment_intent(self, booking: Booking, description: str) -> PaymentIntent:
        if not self.api_key:
            raise PaymentProviderError("Payment provider is not configured.")

        billing = self._build_billing(booking, description)
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as http_client:
                response = http_client.post(
                    f"{self.api_url}/billing/create",
                    json=billing,
                    headers=self._headers(),
                )
        except httpx.HTTPError as e:
            logger.warning("Payment provider request failed for booking %s: %s", booking.id, e)
            raise PaymentProviderError("Payment provider unavailable. Please try again.") from e

        if response.status_code >= 400:
            logger.warning(
                "Payment provider rejected booking %s: %s %s",
                booking.id,
                response.status_code,
                response.text,
            )
            raise PaymentProviderError(self._error_message(response))

        try:
            payload = response.json()
        except ValueError as e:
            raise PaymentProviderError("Payment provider returned an invalid response.") from e

        data = payload.get("data") or {}
        reference = data.get("id")
        if not reference:
            raise PaymentProviderError("Payment provider response is missing a billing id.")

        pix = data.get("pix") or {}
        return PaymentIntent(
            reference=str(reference),
            url=data.get("url"),
            pix_code=pix.get("payload"),
            pix_qr_code=pix.get("qrCode"),
            expires_at=_parse_expiry(data.get("expiresAt") or pix.get("expiresAt")),
        )

    def get_payment_status(self, reference: str) -> PaymentStatus:
        if not self.api_key:
            raise PaymentProviderError("Payment provider is not configured.")

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as http_client:
                response = http_client.get(
                    f"{self.api_url}/billing/get",
                    params={"id": reference},
                    headers=self._headers(),
                )
        except httpx.HTTPError as e:
            logger.warning("Payment status lookup failed for %s: %s", reference, e)
            raise PaymentProviderError("Payment provider unavailable. Please try again.") from e

        if response.status_code >= 400:
            logger.warning(
                "Payment provider refused status lookup for %s: %s %s",
                reference,
                response.status_code,
                response.text,
            )
            raise PaymentProviderError(self._error_message(response, "Could not verify the payment."))

        try:
            data = response.json().get("data") or {}
        except ValueError as e:
            raise PaymentProviderError("Payment provider returned an invalid response.") from e

        provider_status = str(data.get("status") or "").upper()
        if provider_status not in PROVIDER_STATUSES:
            logger.warning("Unknown payment status %r for %s; treating as pending", provider_status, reference)
        return PROVIDER_STATUSES.get(provider_status, PaymentStatus.PENDING)

    @staticmethod
    def _error_message(
        response: httpx.Response,
        default: str = "Could not create the payment. Please try again.",
    ) -> str:
        try:
            error = response.json().get("error")
        except ValueError:
            error = None
        return error or default
