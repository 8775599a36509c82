"""Balance gate - check live provider funds before committing a payout.

An insufficient balance is not an error: the candidate is deferred to
the next run. No partial transfers are attempted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from settlement_engine.recon.config import BalanceGateConfig
from settlement_engine.recon.providers.base import PaymentProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GateResult:
    """Result of a balance gate evaluation."""

    passed: bool
    currency: str
    required_amount: Decimal
    available_amount: Decimal | None

    @property
    def shortfall(self) -> Decimal:
        """Amount of shortfall (0 if no shortfall)."""
        if self.available_amount is None:
            return Decimal("0")
        diff = self.required_amount - self.available_amount
        return diff if diff > 0 else Decimal("0")


class BalanceGate:
    """Queries provider balance per candidate; nothing is cached."""

    def __init__(self, provider: PaymentProvider, config: BalanceGateConfig):
        self.provider = provider
        self.config = config

    async def check(self, currency: str, required: Decimal) -> GateResult:
        """Evaluate whether ``required`` major units of ``currency`` are available."""
        if not self.config.enabled:
            return GateResult(
                passed=True,
                currency=currency,
                required_amount=required,
                available_amount=None,
            )

        available = await self.provider.get_balance(currency)
        result = GateResult(
            passed=available >= required,
            currency=currency,
            required_amount=required,
            available_amount=available,
        )
        if not result.passed:
            logger.info(
                "Insufficient %s balance. Available: %s, Required: %s",
                currency,
                available,
                required,
            )
        return result
