
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional
from uuid import uuid4

from promo_engine.exceptions import AlreadyUsed, Inactive, RewardNotAvailable, SalonLimitReached
from promo_engine.schemas.promo import (
    CommissionRecord, CommissionSettings, PendingNotification, PromoCode, RedeemRequest,
    ReferralVariant, SalonReferralVariant, StandardVariant,
)
from promo_engine.services.discount_calculator import DiscountCalculator


@dataclass
class RedemptionOutcome:
    promo: PromoCode
    discount_amount: float = 0
    friend_redeemed: bool = False
    referrer_redeemed: bool = False
    salon_redeemed: bool = False
    salon_commission_amount: int = 0
    commission_record: Optional[CommissionRecord] = None
    # Sent only after the store write has been acknowledged
    notifications: List[PendingNotification] = field(default_factory=list)


def is_referrer(variant: ReferralVariant, email: Optional[str]) -> bool:
    referrer = (variant.referrer_email or "").strip().lower()
    return bool(referrer and email and referrer == email)


def usage_summary(variant: SalonReferralVariant) -> str:
    if variant.salon_usage_limit:
        return f"{variant.salon_used_count} of {variant.salon_usage_limit} redeemed"
    return f"{variant.salon_used_count} redeemed"


class RedemptionProcessor:
    """Applies one redemption to a promo code.

    Works on a copy: the caller's ``PromoCode`` is never touched, so a
    compare-and-swap retry can start over from freshly loaded state.
    """

    def __init__(self, booking_url: str = ""):
        self.booking_url = booking_url

    @staticmethod
    def ensure_redeemable(promo: PromoCode, email: Optional[str]) -> None:
        if not promo.active:
            raise Inactive()

        variant = promo.variant
        if isinstance(variant, ReferralVariant):
            if is_referrer(variant, email):
                if not variant.referrer_reward_available:
                    raise RewardNotAvailable()
            elif variant.friend_uses_remaining <= 0:
                raise AlreadyUsed()
        elif isinstance(variant, SalonReferralVariant):
            if variant.salon_usage_limit and variant.salon_used_count >= variant.salon_usage_limit:
                raise SalonLimitReached()

    def redeem(
        self,
        promo: PromoCode,
        request: RedeemRequest,
        now: datetime,
        commission_settings: Optional[CommissionSettings] = None,
    ) -> RedemptionOutcome:
        email = request.redeemer_email
        self.ensure_redeemable(promo, email)

        promo = promo.model_copy(deep=True)
        promo.used_count += 1
        if email and email not in promo.used_by_emails:
            promo.used_by_emails.append(email)

        outcome = RedemptionOutcome(
            promo=promo,
            discount_amount=float(DiscountCalculator.calculate_discount(promo, request.original_price)),
        )

        variant = promo.variant
        if isinstance(variant, SalonReferralVariant):
            self._redeem_salon(outcome, variant, request, now, commission_settings or CommissionSettings())
        elif isinstance(variant, ReferralVariant):
            self._redeem_referral(outcome, variant, email)
        elif isinstance(variant, StandardVariant):
            self._deactivate_if_exhausted(promo)
        return outcome

    @staticmethod
    def _deactivate_if_exhausted(promo: PromoCode) -> None:
        if promo.usage_limit and promo.used_count >= promo.usage_limit:
            promo.active = False

    def _redeem_referral(self, outcome: RedemptionOutcome, variant: ReferralVariant, email: str) -> None:
        if is_referrer(variant, email):
            variant.referrer_reward_available = False
            outcome.referrer_redeemed = True
            return

        variant.friend_uses_remaining -= 1
        variant.referrer_reward_available = True
        outcome.friend_redeemed = True
        if variant.referrer_email:
            outcome.notifications.append(PendingNotification(
                recipient=variant.referrer_email.strip().lower(),
                kind="referral_reward_ready",
                variables={"code": outcome.promo.code, "bookingLink": self.booking_url},
            ))

    def _redeem_salon(
        self,
        outcome: RedemptionOutcome,
        variant: SalonReferralVariant,
        request: RedeemRequest,
        now: datetime,
        settings: CommissionSettings,
    ) -> None:
        promo = outcome.promo
        original_price = request.original_price or 0
        final_price = request.final_price if request.final_price is not None else original_price
        total, early, final = DiscountCalculator.split_commission(original_price, settings)

        variant.salon_used_count += 1
        variant.commission_total += total

        # Either limit is enough on its own
        if variant.salon_usage_limit and variant.salon_used_count >= variant.salon_usage_limit:
            promo.active = False
        self._deactivate_if_exhausted(promo)

        outcome.salon_redeemed = True
        outcome.salon_commission_amount = total
        outcome.commission_record = CommissionRecord(
            id=f"salon-ref-{uuid4().hex}",
            promo_code=promo.code,
            salon_name=variant.salon_name,
            salon_email=variant.salon_email,
            client_name=request.client_name,
            client_email=request.redeemer_email,
            service=request.service,
            booking_id=request.booking_id,
            appointment_date=request.appointment_date,
            appointment_time=request.appointment_time,
            original_price=original_price,
            final_price=final_price,
            discount_applied=request.discount if request.discount is not None else outcome.discount_amount,
            client_discount_percent=variant.client_discount_percent,
            commission_percent=settings.total_percentage,
            commission_total_amount=total,
            commission_early_percent=settings.early_percentage,
            commission_final_percent=settings.final_percentage,
            commission_early_amount=early,
            commission_final_amount=final,
            created_at=now,
        )

        if variant.salon_email:
            outcome.notifications.append(PendingNotification(
                recipient=variant.salon_email,
                kind="salon_commission_earned",
                variables={
                    "salonName": variant.salon_name or "",
                    "clientName": request.client_name or "",
                    "service": request.service or "",
                    "commissionAmount": total,
                    "commissionPercent": settings.total_percentage,
                    "usageSummary": usage_summary(variant),
                    "bookingLink": self.booking_url,
                },
            ))
