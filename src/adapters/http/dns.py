"""
HTTP DNS adapter - Implements DNSProvider protocol.

Applies the default mail records for a domain in one idempotent PUT:

    PUT /zones/{fqdn}/records -> {"applied": bool}

Records: MX (priority 10), SPF TXT at the apex, DKIM TXT at
<selector>._domainkey when the email provider returned DKIM material,
and DMARC TXT at _dmarc when a policy is configured.
"""

from typing import Any

from src.domain.models import DnsDefaults

from .client import ApiClient

RECORD_TTL = 3600
MX_PRIORITY = 10


def build_records(defaults: DnsDefaults) -> list[dict[str, Any]]:
    """Record set for the given defaults, in a stable order."""
    fqdn = defaults.fqdn
    records: list[dict[str, Any]] = [
        {"type": "MX", "name": fqdn, "content": defaults.mx_host, "priority": MX_PRIORITY},
        {"type": "TXT", "name": fqdn, "content": f"v=spf1 include:{defaults.spf_include} ~all"},
    ]
    if defaults.dkim is not None:
        records.append(
            {
                "type": "TXT",
                "name": f"{defaults.dkim.selector}._domainkey.{fqdn}",
                "content": defaults.dkim.value,
            }
        )
    if defaults.dmarc_policy:
        records.append({"type": "TXT", "name": f"_dmarc.{fqdn}", "content": defaults.dmarc_policy})
    for record in records:
        record["ttl"] = RECORD_TTL
    return records


class HttpDNSProvider:
    """
    Implements DNSProvider protocol via ApiClient.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def __init__(self, client: ApiClient) -> None:
        self._client = client

    def apply_defaults(self, defaults: DnsDefaults) -> bool:
        response = self._client.request(
            "PUT",
            f"/zones/{defaults.fqdn}/records",
            json={"records": build_records(defaults)},
        )
        return self._client.parse(response, lambda body: bool(body.get("applied", False)))
