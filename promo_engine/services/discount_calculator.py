
from typing import Optional, Tuple
from decimal import Decimal, ROUND_HALF_UP, getcontext
from promo_engine.schemas.promo import CommissionSettings, PromoCode, SalonReferralVariant

getcontext().prec = 28


def D(x) -> Decimal:
    return Decimal(str(x))


def round_currency(x: Decimal) -> Decimal:
    # Whole currency units only; .5 always rounds up
    return x.quantize(Decimal('1'), rounding=ROUND_HALF_UP)


class DiscountCalculator:
    """Service class to calculate client discounts and salon commissions"""

    @staticmethod
    def meets_minimum(promo: PromoCode, amount: Optional[float]) -> bool:
        if promo.min_purchase is None or amount is None:
            return True
        return D(amount) >= D(promo.min_purchase)

    @staticmethod
    def calculate_discount(promo: PromoCode, amount: Optional[float]) -> Decimal:
        if amount is None or amount <= 0:
            return D(0)
        total = D(amount)

        # Salon codes discount the client by their own percent, not the code's value
        if isinstance(promo.variant, SalonReferralVariant):
            discount = round_currency(total * D(promo.variant.client_discount_percent) / D(100))
        elif promo.discount_type == 'percentage':
            discount = round_currency(total * D(promo.discount_value) / D(100))
            if promo.max_discount is not None:
                discount = min(discount, round_currency(D(promo.max_discount)))
        else:
            discount = round_currency(D(promo.discount_value))

        return min(discount, total)

    @staticmethod
    def calculate_commission(original_price: float, percent: float) -> int:
        return int(round_currency(D(original_price) * D(percent) / D(100)))

    @staticmethod
    def split_commission(original_price: float, settings: CommissionSettings) -> Tuple[int, int, int]:
        """Return (total, early, final); early + final always equals total."""
        total = DiscountCalculator.calculate_commission(original_price, settings.total_percentage)
        early = min(DiscountCalculator.calculate_commission(original_price, settings.early_percentage), total)
        return total, early, total - early
