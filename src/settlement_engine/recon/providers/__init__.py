"""Payment provider adapters."""

from settlement_engine.recon.providers.base import (
    PaymentProvider,
    ProviderResult,
    RefundRequest,
    TransferRequest,
)
from settlement_engine.recon.providers.flutterwave import FlutterwaveProvider
from settlement_engine.recon.providers.stub import StubProvider

__all__ = [
    "PaymentProvider",
    "ProviderResult",
    "RefundRequest",
    "TransferRequest",
    "FlutterwaveProvider",
    "StubProvider",
]
