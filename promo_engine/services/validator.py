
import logging
from datetime import datetime
from typing import Tuple

from pydantic import ValidationError

from promo_engine.exceptions import Expired, MisconfiguredCode, NotFound
from promo_engine.schemas.promo import PromoCatalog, PromoCode
from promo_engine.services.code_store import CodeStore

logger = logging.getLogger(__name__)


class PromoValidator:
    """Finds a code and checks its validity window. Never writes.

    Active flags and usage limits are left to the redemption processor,
    which rejects with a variant-specific reason.
    """

    def __init__(self, code_store: CodeStore):
        self.code_store = code_store

    def validate(self, code: str, now: datetime) -> PromoCode:
        catalog, _ = self.code_store.load()
        _, promo = self.check(catalog, code, now)
        return promo

    @staticmethod
    def check(catalog: PromoCatalog, code: str, now: datetime) -> Tuple[int, PromoCode]:
        found = catalog.find(code)
        if found is None:
            raise NotFound()
        index, entry = found

        try:
            promo = PromoCode.model_validate(entry)
        except ValidationError as e:
            logger.error(f"Promo code '{entry.get('code')}' failed to load: {e}")
            raise MisconfiguredCode() from e

        today = now.date()
        if promo.valid_from is not None and today < promo.valid_from:
            raise Expired("This promo code is not valid yet")
        if promo.valid_until is not None and today > promo.valid_until:
            raise Expired()
        return index, promo
