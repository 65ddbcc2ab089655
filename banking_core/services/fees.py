"""
Transfer fee policy.

Fee policy is owned by the payment-method configuration; the core only
consumes a resolved fee. A policy is either a fixed amount or a
percentage of the transfer amount, the same model payment methods use
for deposits and withdrawals.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from banking_core.config import get_settings
from banking_core.models.enums import FeeType, TransferType


@dataclass(frozen=True)
class FeePolicy:
    fee_type: FeeType = FeeType.FIXED
    value: Decimal = Decimal("0")

    def resolve(self, amount: Decimal, precision: Decimal) -> Decimal:
        if self.fee_type == FeeType.PERCENTAGE:
            fee = amount * self.value / Decimal("100")
        else:
            fee = self.value
        return fee.quantize(precision, rounding=ROUND_HALF_UP)


FREE = FeePolicy()


class FeePolicyProvider:
    """Maps a transfer type to its fee policy."""

    def __init__(self, policies: dict[TransferType, FeePolicy] | None = None):
        if policies is None:
            settings = get_settings()
            policies = {
                TransferType.INTERNAL: FREE,
                TransferType.LOCAL: FeePolicy(
                    FeeType.PERCENTAGE, settings.LOCAL_TRANSFER_FEE_PERCENT
                ),
                TransferType.INTERNATIONAL: FeePolicy(
                    FeeType.PERCENTAGE,
                    settings.INTERNATIONAL_TRANSFER_FEE_PERCENT,
                ),
                TransferType.CRYPTO: FREE,
            }
        self.policies = policies

    def policy_for(self, transfer_type: TransferType) -> FeePolicy:
        return self.policies.get(transfer_type, FREE)
