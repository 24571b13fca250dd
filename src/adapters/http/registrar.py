"""
HTTP registrar adapter - Implements Registrar protocol over a JSON API.

Endpoints:
    GET  /domains/{fqdn}/availability -> {"available": bool}
    POST /domains                     -> {"registrar_ref": str}   (409: name taken)
    GET  /domains/{fqdn}              -> {"registrar_ref": str}   (404: not held)
"""

from typing import Any

from src.domain.exceptions import NonRetryableAdapterError
from src.domain.models import RegistrationResult

from .client import ApiClient


class HttpRegistrar:
    """
    Implements Registrar protocol via ApiClient.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def __init__(self, client: ApiClient) -> None:
        self._client = client

    def check_availability(self, fqdn: str) -> bool:
        response = self._client.request("GET", f"/domains/{fqdn}/availability")
        return self._client.parse(response, lambda body: bool(body.get("available", False)))

    def register(self, fqdn: str, years: int, idempotency_key: str) -> RegistrationResult:
        response = self._client.request(
            "POST",
            "/domains",
            json={"fqdn": fqdn, "years": years},
            idempotency_key=idempotency_key,
            expected=(409,),
        )
        if response.status_code == 409:
            raise NonRetryableAdapterError(f"{fqdn} is not available for registration")
        return self._client.parse(response, _to_result)

    def lookup(self, fqdn: str) -> RegistrationResult | None:
        response = self._client.request("GET", f"/domains/{fqdn}", expected=(404,))
        if response.status_code == 404:
            return None
        return self._client.parse(response, _to_result)


def _to_result(body: dict[str, Any]) -> RegistrationResult:
    return RegistrationResult(registrar_ref=body["registrar_ref"])
