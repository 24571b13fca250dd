"""HTTP adapters - External registrar, email, DNS and payment APIs."""

from .client import ApiClient
from .dns import HttpDNSProvider
from .email_provider import HttpEmailProvider
from .payment import HttpPaymentProcessor
from .registrar import HttpRegistrar

__all__ = [
    "ApiClient",
    "HttpDNSProvider",
    "HttpEmailProvider",
    "HttpPaymentProcessor",
    "HttpRegistrar",
]
