import logging

from pydantic import ValidationError

from promo_engine.config import SALON_COMMISSION_EARLY_PERCENT, SALON_COMMISSION_FINAL_PERCENT
from promo_engine.schemas.promo import CommissionSettings
from promo_engine.services.document_store import DocumentStore

logger = logging.getLogger(__name__)

KEY = "salon-commission-settings"


def default_commission_settings() -> CommissionSettings:
    return CommissionSettings(
        early_percentage=SALON_COMMISSION_EARLY_PERCENT,
        final_percentage=SALON_COMMISSION_FINAL_PERCENT,
    )


def load_commission_settings(store: DocumentStore) -> CommissionSettings:
    """Business-wide salon commission split, owned by the admin settings screen."""
    doc, _ = store.get_for_update(KEY)
    if not doc:
        return default_commission_settings()

    # A bare total is treated as paid entirely at the final stage
    if "totalPercentage" in doc and "earlyPercentage" not in doc and "finalPercentage" not in doc:
        doc = {"earlyPercentage": 0, "finalPercentage": doc["totalPercentage"]}

    try:
        return CommissionSettings.model_validate(doc)
    except ValidationError as e:
        logger.error(f"Invalid salon commission settings, using defaults: {e}")
        return default_commission_settings()
