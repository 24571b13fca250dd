"""
HTTP email provider adapter - Implements EmailProvider protocol.

Endpoints:
    POST /domains                   -> {"provider_ref": str, "dkim": {...} | null}
    GET  /domains/{fqdn}            -> same body                 (404: not created)
    POST /domains/{fqdn}/mailboxes  -> {"mailbox_ref": str}
"""

from typing import Any

from src.domain.models import DkimRecord, EmailDomain

from .client import ApiClient


class HttpEmailProvider:
    """
    Implements EmailProvider protocol via ApiClient.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def __init__(self, client: ApiClient) -> None:
        self._client = client

    def create_domain(self, fqdn: str) -> EmailDomain:
        response = self._client.request("POST", "/domains", json={"fqdn": fqdn})
        return self._client.parse(response, _to_email_domain)

    def lookup_domain(self, fqdn: str) -> EmailDomain | None:
        response = self._client.request("GET", f"/domains/{fqdn}", expected=(404,))
        if response.status_code == 404:
            return None
        return self._client.parse(response, _to_email_domain)

    def create_mailbox(self, fqdn: str, localpart: str, quota_mb: int, password: str) -> str:
        response = self._client.request(
            "POST",
            f"/domains/{fqdn}/mailboxes",
            json={"localpart": localpart, "quota_mb": quota_mb, "password": password},
        )
        return self._client.parse(response, lambda body: body["mailbox_ref"])


def _to_email_domain(body: dict[str, Any]) -> EmailDomain:
    dkim = body.get("dkim")
    return EmailDomain(
        provider_ref=body["provider_ref"],
        dkim=DkimRecord(selector=dkim["selector"], value=dkim["value"]) if dkim else None,
    )
