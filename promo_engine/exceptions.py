class RedemptionError(Exception):
    """Base for every outcome that stops a code from being quoted or redeemed.

    ``message`` is user-facing and is returned verbatim as ``{"error": message}``.
    """

    status_code = 400
    message = "Promo code cannot be redeemed"

    def __init__(self, message=None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class InvalidRequest(RedemptionError):
    message = "Invalid request"


class NotFound(RedemptionError):
    status_code = 404
    message = "Promo code not found"


class Expired(RedemptionError):
    message = "This promo code has expired"


class Inactive(RedemptionError):
    message = "This promo code is no longer active"


class RewardNotAvailable(RedemptionError):
    message = "Referral reward not available for this code."


class AlreadyUsed(RedemptionError):
    message = "Referral code has already been used."


class SalonLimitReached(RedemptionError):
    message = "This salon referral code has reached its usage limit."


class WelcomeDiscountUsed(RedemptionError):
    message = (
        "You have already used your welcome discount. "
        "Each email address can only use the welcome discount once."
    )


class MinimumPurchaseNotMet(RedemptionError):
    message = "Order total does not meet the minimum purchase for this promo code"


class MisconfiguredCode(RedemptionError):
    status_code = 500
    message = "This promo code is misconfigured"


# Transient: the only class a client may retry
class TransientStoreError(RedemptionError):
    status_code = 503


class Conflict(TransientStoreError):
    message = "Promo code is being redeemed by another checkout, please try again"


class StorageUnavailable(TransientStoreError):
    message = "Promo code storage is temporarily unavailable, please try again"
