"""
HTTP payment adapter - Implements PaymentProcessor protocol.

    POST /captures -> {"status": "captured" | "declined", "reference": str, ...}

A 402 response is a decline, reported as an uncaptured PaymentCapture so
the saga can fail the step without retrying.
"""

from decimal import Decimal

from src.domain.models import PaymentCapture

from .client import ApiClient


class HttpPaymentProcessor:
    """
    Implements PaymentProcessor protocol via ApiClient.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def __init__(self, client: ApiClient) -> None:
        self._client = client

    def capture(
        self, order_id: str, amount: Decimal, currency: str, idempotency_key: str
    ) -> PaymentCapture:
        response = self._client.request(
            "POST",
            "/captures",
            json={"order_id": order_id, "amount": str(amount), "currency": currency},
            idempotency_key=idempotency_key,
            expected=(402,),
        )
        if response.status_code == 402:
            return PaymentCapture(captured=False, amount=amount, currency=currency)

        return self._client.parse(
            response,
            lambda body: PaymentCapture(
                captured=body.get("status") == "captured",
                amount=Decimal(str(body.get("amount", amount))),
                currency=body.get("currency", currency),
                reference=body.get("reference"),
            ),
        )
