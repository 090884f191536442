
import logging
import random
import threading
import time
from contextlib import contextmanager, nullcontext
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from promo_engine.config import (
    BOOKING_URL, LOCK_TIMEOUT_SECONDS, REDEEM_MAX_RETRIES, RETRY_BACKOFF_SECONDS,
)
from promo_engine.exceptions import Conflict, MinimumPurchaseNotMet
from promo_engine.schemas.promo import QuoteRequest, QuoteResponse, RedeemRequest
from promo_engine.services.code_store import CodeStore
from promo_engine.services.commission_ledger import CommissionLedger
from promo_engine.services.commission_settings import load_commission_settings
from promo_engine.services.discount_calculator import DiscountCalculator
from promo_engine.services.document_store import DocumentStore, VersionedWrite
from promo_engine.services.redemption_processor import RedemptionOutcome, RedemptionProcessor
from promo_engine.services.validator import PromoValidator
from promo_engine.services.welcome_discounts import WelcomeDiscountTracker

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KeyedLocks:
    """Per-key mutexes, created on demand and dropped once nobody holds or waits on them."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, list] = {}

    @contextmanager
    def hold(self, key: str, timeout: float = LOCK_TIMEOUT_SECONDS):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            if not entry[0].acquire(timeout=timeout):
                logger.warning(f"Timed out waiting for lock '{key}'")
                raise Conflict()
            try:
                yield
            finally:
                entry[0].release()
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


# Shared by every request handled by this process
CODE_LOCKS = KeyedLocks()


class RedemptionService:
    """Validate, redeem and commit a promo code as one unit.

    Same-code redemptions in this process queue on a per-code lock. Every code
    lives in the one catalog document, so each read-decide-write pass also
    holds the catalog lock and writers in this process never conflict with
    each other. Across processes the write is compare-and-swap, retried from a
    fresh read with jittered backoff up to ``max_retries`` times before giving
    up with :class:`Conflict`.
    """

    CATALOG_LOCK = "document:" + CodeStore.KEY

    def __init__(
        self,
        store: DocumentStore,
        max_retries: int = REDEEM_MAX_RETRIES,
        locks: Optional[KeyedLocks] = CODE_LOCKS,
        clock: Callable[[], datetime] = _utcnow,
        booking_url: str = BOOKING_URL,
        backoff_seconds: float = RETRY_BACKOFF_SECONDS,
    ):
        self.store = store
        self.code_store = CodeStore(store)
        self.ledger = CommissionLedger(store)
        self.welcome = WelcomeDiscountTracker(store)
        self.validator = PromoValidator(self.code_store)
        self.processor = RedemptionProcessor(booking_url=booking_url)
        self.max_retries = max(1, max_retries)
        self.locks = locks
        self.clock = clock
        self.backoff_seconds = backoff_seconds

    def redeem(self, request: RedeemRequest) -> RedemptionOutcome:
        key = request.code.strip().lower()
        with self._hold("code:" + key):
            for attempt in range(1, self.max_retries + 1):
                with self._hold(self.CATALOG_LOCK):
                    outcome = self._attempt(request)
                if outcome is not None:
                    logger.info(
                        f"Redeemed promo code '{outcome.promo.code}' ({outcome.promo.kind}) "
                        f"for {request.redeemer_email}, used {outcome.promo.used_count}"
                        + (f", commission {outcome.salon_commission_amount}" if outcome.salon_redeemed else "")
                    )
                    return outcome
                logger.warning(f"Concurrent update on promo code '{key}', attempt {attempt}/{self.max_retries}")
                if attempt < self.max_retries:
                    self._backoff(attempt)

        logger.error(f"Giving up on promo code '{key}' after {self.max_retries} conflicting attempts")
        raise Conflict()

    def _hold(self, key: str):
        return self.locks.hold(key) if self.locks is not None else nullcontext()

    def _backoff(self, attempt: int) -> None:
        delay = min(1.0, self.backoff_seconds * 2 ** (attempt - 1))
        time.sleep(random.uniform(0, delay))

    def _attempt(self, request: RedeemRequest) -> Optional[RedemptionOutcome]:
        """One read-decide-write pass. Returns None when another writer got there first."""
        now = self.clock()
        catalog, catalog_version = self.code_store.load()
        index, promo = PromoValidator.check(catalog, request.code, now)

        writes: List[VersionedWrite] = []
        email = request.redeemer_email

        if promo.is_welcome_discount:
            recipients, recipients_version = self.welcome.load()
            WelcomeDiscountTracker.ensure_unused(recipients, email)
            recipients = WelcomeDiscountTracker.mark_used(recipients, email, promo.code, now)
            writes.append(self.welcome.write(recipients, recipients_version))

        settings = load_commission_settings(self.store) if promo.is_salon_referral else None
        outcome = self.processor.redeem(promo, request, now, settings)
        writes.insert(0, self.code_store.write(catalog.with_promo(index, outcome.promo), catalog_version))

        if outcome.commission_record is not None:
            referrals, ledger_version = self.ledger.load()
            referrals = CommissionLedger.append(referrals, outcome.commission_record)
            writes.append(self.ledger.write(referrals, ledger_version))

        if not self.store.commit(writes):
            return None
        return outcome

    def quote(self, request: QuoteRequest) -> QuoteResponse:
        """Read-only preview of what redeeming would give. Takes no lock."""
        promo = self.validator.validate(request.code, self.clock())
        RedemptionProcessor.ensure_redeemable(promo, request.email)

        if promo.is_welcome_discount and request.email:
            recipients, _ = self.welcome.load()
            WelcomeDiscountTracker.ensure_unused(recipients, request.email)

        if not DiscountCalculator.meets_minimum(promo, request.amount):
            raise MinimumPurchaseNotMet(
                f"This promo code requires a minimum purchase of {promo.min_purchase:g}"
            )

        return QuoteResponse(
            code=promo.code,
            variant=promo.kind,
            discount_type=promo.discount_type,
            discount_value=promo.discount_value,
            discount_amount=float(DiscountCalculator.calculate_discount(promo, request.amount)),
        )
