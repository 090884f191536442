import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import promo_code, referral_code, salon_code
from promo_engine.exceptions import (
    AlreadyUsed, Conflict, Inactive, RedemptionError, RewardNotAvailable, SalonLimitReached,
    StorageUnavailable,
)
from promo_engine.schemas.promo import RedeemRequest
from promo_engine.services.document_store import VersionedWrite
from promo_engine.services.redemption_service import KeyedLocks, RedemptionService

WORKERS = 10


def race(service, code, emails, **fields):
    """Start every redemption at the same moment; return outcomes and rejections."""
    barrier = threading.Barrier(len(emails))

    def attempt(email):
        barrier.wait()
        try:
            return service.redeem(RedeemRequest(code=code, redeemer_email=email, **fields))
        except RedemptionError as e:
            return e

    with ThreadPoolExecutor(max_workers=len(emails)) as pool:
        results = list(pool.map(attempt, emails))

    accepted = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, Exception)]
    return accepted, rejected


def stored_promo(store, code):
    doc, _ = store.get_for_update("promo-codes")
    return next(p for p in doc["promoCodes"] if p["code"] == code)


@pytest.mark.parametrize("usage_limit", [1, 3])
def test_limited_code_never_over_redeemed_with_code_locks(store, seed, usage_limit):
    seed(promo_code("SAVE10", usageLimit=usage_limit))
    service = RedemptionService(store, locks=KeyedLocks())

    accepted, rejected = race(service, "SAVE10", [f"user{i}@x.com" for i in range(WORKERS)])

    assert len(accepted) == usage_limit
    assert len(rejected) == WORKERS - usage_limit
    assert all(isinstance(e, Inactive) for e in rejected)
    stored = stored_promo(store, "SAVE10")
    assert stored["usedCount"] == usage_limit
    assert stored["active"] is False
    assert len(stored["usedByEmails"]) == usage_limit


def test_limited_code_never_over_redeemed_with_compare_and_swap_only(store, seed):
    """No in-process lock: versioned writes alone must stop the lost update"""
    seed(promo_code("SAVE10", usageLimit=3))
    service = RedemptionService(store, locks=None, max_retries=WORKERS * 2)

    accepted, rejected = race(service, "SAVE10", [f"user{i}@x.com" for i in range(WORKERS)])

    assert len(accepted) == 3
    assert all(isinstance(e, Inactive) for e in rejected)
    assert stored_promo(store, "SAVE10")["usedCount"] == 3


def test_friend_uses_never_exceed_initial_allowance(store, seed):
    seed(referral_code("REF", "owner@x.com", friendUsesRemaining=2))
    service = RedemptionService(store, locks=None, max_retries=WORKERS * 2)

    accepted, rejected = race(service, "REF", [f"friend{i}@x.com" for i in range(WORKERS)])

    assert len(accepted) == 2
    assert all(isinstance(e, AlreadyUsed) for e in rejected)
    stored = stored_promo(store, "REF")
    assert stored["friendUsesRemaining"] == 0
    assert stored["usedCount"] == 2


def test_ledger_matches_salon_usage_under_contention(store, seed):
    seed(
        salon_code("GLOW"),
        salon_code("SHINE", salonEmail="hello@shine.com"),
        commission_settings={"earlyPercentage": 0, "finalPercentage": 20},
    )
    service = RedemptionService(store, locks=KeyedLocks(), max_retries=WORKERS * 2)
    emails = [f"client{i}@x.com" for i in range(WORKERS // 2)]

    # Two codes share the catalog and ledger documents
    with ThreadPoolExecutor(max_workers=2) as pool:
        glow = pool.submit(race, service, "GLOW", emails, original_price=1000)
        shine = pool.submit(race, service, "SHINE", emails, original_price=500)
        glow_accepted, glow_rejected = glow.result()
        shine_accepted, shine_rejected = shine.result()

    assert glow_rejected == [] and shine_rejected == []
    records, _ = store.get_for_update("referrals-tracking")
    by_code = {"GLOW": 0, "SHINE": 0}
    for record in records["referrals"]:
        by_code[record["promoCode"]] += 1

    for code, price in (("GLOW", 1000), ("SHINE", 500)):
        stored = stored_promo(store, code)
        assert stored["salonUsedCount"] == len(emails)
        assert by_code[code] == stored["salonUsedCount"]
        assert stored["commissionTotal"] == len(emails) * price * 20 / 100


def test_only_one_referrer_claim_wins(store, seed):
    seed(referral_code("REF", "owner@x.com", referrerRewardAvailable=True, friendUsesRemaining=0))
    service = RedemptionService(store, locks=None, max_retries=WORKERS * 2)

    accepted, rejected = race(service, "REF", ["owner@x.com"] * WORKERS)

    assert len(accepted) == 1
    assert accepted[0].referrer_redeemed
    assert len(rejected) == WORKERS - 1
    assert all(isinstance(e, RewardNotAvailable) for e in rejected)
    stored = stored_promo(store, "REF")
    assert stored["referrerRewardAvailable"] is False
    assert stored["usedCount"] == 1


def test_salon_usage_limit_holds_under_contention(store, seed):
    seed(salon_code("GLOW", salonUsageLimit=2), commission_settings={"earlyPercentage": 5, "finalPercentage": 15})
    service = RedemptionService(store, locks=None, max_retries=WORKERS * 2)

    accepted, rejected = race(service, "GLOW", [f"client{i}@x.com" for i in range(WORKERS)], original_price=1000)

    assert len(accepted) == 2
    assert all(isinstance(e, (Inactive, SalonLimitReached)) for e in rejected)
    stored = stored_promo(store, "GLOW")
    assert stored["salonUsedCount"] == 2
    assert stored["commissionTotal"] == 400
    assert stored["active"] is False
    records, _ = store.get_for_update("referrals-tracking")
    assert len(records["referrals"]) == 2


def test_distinct_codes_all_redeem_with_default_settings(store, seed):
    """Different codes share the catalog document but must not crowd each other out"""
    codes = [f"CODE{i}" for i in range(30)]
    seed(*[promo_code(code, usageLimit=1) for code in codes])
    service = RedemptionService(store)
    barrier = threading.Barrier(len(codes))

    def attempt(code):
        barrier.wait()
        return service.redeem(RedeemRequest(code=code, redeemer_email=f"{code.lower()}@x.com"))

    with ThreadPoolExecutor(max_workers=len(codes)) as pool:
        outcomes = list(pool.map(attempt, codes))

    assert [o.promo.code for o in outcomes] == codes
    for code in codes:
        stored = stored_promo(store, code)
        assert stored["usedCount"] == 1
        assert stored["active"] is False


class AlwaysConflictingStore:
    def __init__(self, store):
        self.store = store
        self.commits = 0

    def get_for_update(self, key):
        return self.store.get_for_update(key)

    def put_if_version(self, key, value, version):
        return self.commit([VersionedWrite(key, value, version)])

    def commit(self, writes):
        self.commits += 1
        return False


class BrokenStore(AlwaysConflictingStore):
    def commit(self, writes):
        raise StorageUnavailable()


def test_conflict_after_retries_exhausted(store, seed):
    seed(promo_code("SAVE10"))
    flaky = AlwaysConflictingStore(store)
    service = RedemptionService(flaky, max_retries=3, locks=KeyedLocks())

    with pytest.raises(Conflict) as exc:
        service.redeem(RedeemRequest(code="SAVE10", redeemer_email="a@x.com"))

    assert exc.value.status_code == 503
    assert flaky.commits == 3
    assert stored_promo(store, "SAVE10")["usedCount"] == 0


def test_storage_failure_is_distinct_from_business_rejection(store, seed):
    seed(promo_code("SAVE10"))
    service = RedemptionService(BrokenStore(store), locks=KeyedLocks())

    with pytest.raises(StorageUnavailable) as exc:
        service.redeem(RedeemRequest(code="SAVE10", redeemer_email="a@x.com"))
    assert exc.value.status_code == 503


def test_batch_commit_is_all_or_nothing(store, seed):
    seed(promo_code("SAVE10"))
    catalog, version = store.get_for_update("promo-codes")
    catalog["promoCodes"][0]["usedCount"] = 1

    ok = store.commit([
        VersionedWrite("promo-codes", catalog, version),
        VersionedWrite("referrals-tracking", {"referrals": []}, version=7),
    ])

    assert ok is False
    assert store.get_for_update("promo-codes") == ({"promoCodes": [promo_code("SAVE10")]}, version)
    assert store.get_for_update("referrals-tracking") == (None, 0)


def test_put_if_version_rejects_stale_writes(store):
    assert store.put_if_version("doc", {"n": 1}, 0) is True
    assert store.put_if_version("doc", {"n": 2}, 0) is False
    assert store.put_if_version("doc", {"n": 2}, 1) is True
    assert store.put_if_version("doc", {"n": 3}, 1) is False
    assert store.get_for_update("doc") == ({"n": 2}, 2)


def test_keyed_locks_are_released():
    locks = KeyedLocks()

    with locks.hold("save10"):
        with pytest.raises(Conflict):
            with locks.hold("save10", timeout=0.01):
                pass
        with locks.hold("other"):
            pass

    assert locks._locks == {}
