"""
CryptoEscrow - Fee Policy

Platform fees are expressed in basis points (1 bp = 0.01%) and computed with
integer floor division, so the fee never exceeds the principal and the seller
share is always ``amount - fee``.
"""

from escrow_exceptions import InvalidFeeConfiguration, InvalidPayoutAmounts

BASIS_POINTS = 10_000

# Hard ceiling on the configurable platform fee (5%)
MAX_PLATFORM_FEE_BPS = 500


def platform_fee(amount: int, rate_bps: int) -> int:
    """Fee owed on ``amount`` at ``rate_bps``; floor division, no rounding correction."""
    return amount * rate_bps // BASIS_POINTS


def validate_fee_rate(rate_bps: int, max_bps: int = MAX_PLATFORM_FEE_BPS) -> int:
    """
    Validate a platform fee rate at configuration time.

    Args:
        rate_bps: Proposed rate in basis points
        max_bps: Hard maximum

    Returns:
        The validated rate

    Raises:
        InvalidFeeConfiguration: if the rate is negative or above the maximum
    """
    if not isinstance(rate_bps, int) or isinstance(rate_bps, bool):
        raise InvalidFeeConfiguration(
            "Fee rate must be an integer number of basis points",
            component="fee_policy",
            action="validate_fee_rate",
            details={"rate_bps": rate_bps},
        )
    if rate_bps < 0 or rate_bps > max_bps:
        raise InvalidFeeConfiguration(
            f"Fee rate {rate_bps}bp outside [0, {max_bps}]",
            component="fee_policy",
            action="validate_fee_rate",
            details={"rate_bps": rate_bps, "max_bps": max_bps},
        )
    return rate_bps


def split_release(amount: int, rate_bps: int) -> tuple[int, int]:
    """Return (seller_amount, fee) for a release of ``amount``."""
    fee = platform_fee(amount, rate_bps)
    return amount - fee, fee


def validate_payout(buyer_amount: int, seller_amount: int, amount: int, fee: int) -> int:
    """
    Check a dispute payout split against the distributable principal.

    Returns:
        The residual left in custody (``amount - fee - buyer - seller``)

    Raises:
        InvalidPayoutAmounts: negative payouts, or a sum above ``amount - fee``
    """
    distributable = amount - fee
    if buyer_amount < 0 or seller_amount < 0:
        raise InvalidPayoutAmounts(
            "Payout amounts must be non-negative",
            component="fee_policy",
            action="validate_payout",
            details={"buyer_amount": buyer_amount, "seller_amount": seller_amount},
        )
    if buyer_amount + seller_amount > distributable:
        raise InvalidPayoutAmounts(
            f"Payouts {buyer_amount + seller_amount} exceed distributable {distributable}",
            component="fee_policy",
            action="validate_payout",
            details={
                "buyer_amount": buyer_amount,
                "seller_amount": seller_amount,
                "distributable": distributable,
            },
        )
    return distributable - buyer_amount - seller_amount
