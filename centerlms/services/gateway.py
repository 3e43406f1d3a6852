import logging
from dataclasses import dataclass, field

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from centerlms.core import config
from centerlms.core.errors import UpstreamPaymentError

logger = logging.getLogger(__name__)


@dataclass
class GatewayPayment:
    id: str
    status: str
    amount: int | None = None
    reference: str | None = None
    payment_link: str | None = None
    raw: dict = field(default_factory=dict)

    @classmethod
    def from_response(cls, data: dict) -> "GatewayPayment":
        if not isinstance(data, dict) or not data.get("id"):
            raise UpstreamPaymentError("Payment provider returned no payment id")
        return cls(
            id=str(data["id"]),
            status=str(data.get("status", "pending")).lower(),
            amount=data.get("amount"),
            reference=data.get("reference") or data.get("externalId"),
            payment_link=data.get("paymentLink") or data.get("payment_link") or data.get("checkout_url"),
            raw=data,
        )


class PaymentGateway:
    """Thin client for the mobile-money collection API."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.Client:
        if not self.api_key:
            raise UpstreamPaymentError("Payment provider is not configured")
        return httpx.Client(
            base_url=self.base_url,
            headers={"X-API-Key": self.api_key},
            timeout=self.timeout,
            transport=self.transport,
        )

    def collect(
        self,
        amount: int,
        phone_number: str,
        reference: str,
        description: str,
    ) -> GatewayPayment:
        # not retried: a repeated collect would prompt the payer twice
        try:
            with self._client() as client:
                response = client.post(
                    "/collect",
                    json={
                        "amount": amount,
                        "phoneNumber": phone_number,
                        "externalId": reference,
                        "description": description,
                    },
                )
                response.raise_for_status()
                payment = GatewayPayment.from_response(response.json())
        except httpx.HTTPStatusError as e:
            logger.error(
                "collect %s rejected by provider: %s %s",
                reference,
                e.response.status_code,
                e.response.text[:200],
            )
            raise UpstreamPaymentError(f"Payment provider error: {e.response.status_code}")
        except (httpx.HTTPError, ValueError) as e:
            logger.error("collect %s failed: %s", reference, e)
            raise UpstreamPaymentError()

        if payment.reference is None:
            payment.reference = reference
        logger.info("collect %s started as payment %s", reference, payment.id)
        return payment

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, max=5),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    def _fetch(self, payment_id: str) -> dict:
        with self._client() as client:
            response = client.get(f"/payments/{payment_id}")
            response.raise_for_status()
            return response.json()

    def get_payment(self, payment_id: str) -> GatewayPayment:
        try:
            data = self._fetch(payment_id)
        except httpx.HTTPStatusError as e:
            logger.error("payment %s lookup failed: %s", payment_id, e.response.status_code)
            raise UpstreamPaymentError(f"Payment provider error: {e.response.status_code}")
        except (httpx.HTTPError, ValueError) as e:
            logger.error("payment %s lookup failed: %s", payment_id, e)
            raise UpstreamPaymentError()
        return GatewayPayment.from_response(data)


def get_gateway() -> PaymentGateway:
    return PaymentGateway(
        config.PAYMENT_GATEWAY_URL,
        config.PAYMENT_GATEWAY_API_KEY,
        timeout=config.PAYMENT_GATEWAY_TIMEOUT,
    )
