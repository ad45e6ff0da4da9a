"""Commission split calculation for marketplace sales"""

import logging
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Dict, Union

from config import Config

logger = logging.getLogger(__name__)


class FeeCalculator:
    """Handles platform commission calculations with Decimal precision"""

    # 2 decimal places for PEN amounts
    MONEY_PRECISION = Decimal("0.01")
    # Largest value a Numeric(10, 2) money column holds
    MAX_AMOUNT = Decimal("99999999.99")

    @classmethod
    def get_commission_rate(cls) -> Decimal:
        """Platform commission as a fraction (0.10 == 10%)"""
        return Decimal(str(Config.PLATFORM_COMMISSION_RATE))

    @classmethod
    def to_money(cls, value: Union[Decimal, int, float, str]) -> Decimal:
        """Convert to a 2-place Decimal using ROUND_HALF_UP; floats go through str() first"""
        try:
            amount = value if isinstance(value, Decimal) else Decimal(str(value))
            if not amount.is_finite() or abs(amount) > cls.MAX_AMOUNT:
                raise ValueError(f"Monetary amount out of range: {value!r}")
            return amount.quantize(cls.MONEY_PRECISION, rounding=ROUND_HALF_UP)
        except InvalidOperation as e:
            raise ValueError(f"Invalid monetary amount: {value!r}") from e

    @classmethod
    def calculate_commission_split(cls, amount: Union[Decimal, int, float, str]) -> Dict[str, Decimal]:
        """
        Split a sale amount into platform commission and seller earnings.

        commission = round(amount * rate, 2); seller_earnings = amount - commission,
        so commission + seller_earnings always equals the rounded sale price.

        Returns:
            Dict with sale_price, platform_commission and seller_earnings
        """
        sale_price = cls.to_money(amount)
        if sale_price <= 0:
            raise ValueError(f"Sale amount must be positive, got {sale_price}")

        commission = (sale_price * cls.get_commission_rate()).quantize(cls.MONEY_PRECISION, rounding=ROUND_HALF_UP)
        seller_earnings = (sale_price - commission).quantize(cls.MONEY_PRECISION, rounding=ROUND_HALF_UP)

        logger.debug(f"Commission split for {sale_price}: platform={commission}, seller={seller_earnings}")
        return {
            "sale_price": sale_price,
            "platform_commission": commission,
            "seller_earnings": seller_earnings,
        }

    @classmethod
    def amount_matches_price(cls, amount: Union[Decimal, int, float, str], price: Union[Decimal, int, float, str]) -> bool:
        """Whether a client-quoted amount equals the stored price within the configured tolerance"""
        tolerance = Decimal(str(Config.PURCHASE_AMOUNT_TOLERANCE))
        return abs(cls.to_money(amount) - cls.to_money(price)) <= tolerance
