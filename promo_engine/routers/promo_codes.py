
from fastapi import APIRouter, BackgroundTasks, Depends
from promo_engine.database import get_store
from promo_engine.schemas.promo import QuoteRequest, QuoteResponse, RedeemRequest, RedeemResponse
from promo_engine.services.notification_dispatcher import NotificationDispatcher, build_mailer
from promo_engine.services.redemption_service import RedemptionService

router = APIRouter(prefix="/promo-codes", tags=["promo-codes"])

_dispatcher = NotificationDispatcher(build_mailer())


def get_dispatcher() -> NotificationDispatcher:
    return _dispatcher


def get_redemption_service(store=Depends(get_store)) -> RedemptionService:
    return RedemptionService(store)


@router.post("/redeem", response_model=RedeemResponse)
def redeem_promo_code(
    payload: RedeemRequest,
    background_tasks: BackgroundTasks,
    service: RedemptionService = Depends(get_redemption_service),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    outcome = service.redeem(payload)

    # Runs after the response is sent; never affects the redemption
    if outcome.notifications:
        background_tasks.add_task(dispatcher.dispatch, outcome.notifications)

    return RedeemResponse(
        friend_redeemed=outcome.friend_redeemed,
        referrer_redeemed=outcome.referrer_redeemed,
        salon_redeemed=outcome.salon_redeemed,
        salon_commission_amount=outcome.salon_commission_amount,
        discount_amount=outcome.discount_amount,
        promo_code=outcome.promo.to_public(),
    )


@router.post("/validate", response_model=QuoteResponse)
def validate_promo_code(payload: QuoteRequest, service: RedemptionService = Depends(get_redemption_service)):
    return service.quote(payload)
