import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from promo_engine.database import Base, build_engine, get_store
from promo_engine.main import app
from promo_engine.routers.promo_codes import get_dispatcher
from promo_engine.services.document_store import SqlDocumentStore, VersionedWrite
from promo_engine.services.notification_dispatcher import NotificationDispatcher


class RecordingMailer:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    def send(self, to_email, subject, body):
        if self.fail:
            raise ConnectionError("SMTP server unreachable")
        self.sent.append({"to": to_email, "subject": subject, "body": body})


@pytest.fixture
def engine(tmp_path):
    """Fresh SQLite file per test; a file (not :memory:) so threads share it."""
    engine = build_engine(f"sqlite:///{tmp_path / 'promo.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return SqlDocumentStore(sessionmaker(autocommit=False, autoflush=False, bind=engine))


@pytest.fixture
def seed(store):
    def _seed(*promo_codes, commission_settings=None, **documents):
        writes = [VersionedWrite(key="promo-codes", value={"promoCodes": list(promo_codes)}, version=0)]
        if commission_settings is not None:
            writes.append(VersionedWrite(key="salon-commission-settings", value=commission_settings, version=0))
        for key, value in documents.items():
            writes.append(VersionedWrite(key=key.replace("_", "-"), value=value, version=0))
        assert store.commit(writes)
    return _seed


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def client(store, mailer):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_dispatcher] = lambda: NotificationDispatcher(mailer)
    yield TestClient(app)
    app.dependency_overrides.clear()


def promo_code(code, **fields):
    """A stored promo-code document with sensible defaults."""
    doc = {
        "code": code,
        "discountType": "percentage",
        "discountValue": 10,
        "validFrom": "2020-01-01",
        "validUntil": "2099-12-31",
        "usageLimit": None,
        "usedCount": 0,
        "active": True,
        "usedByEmails": [],
    }
    doc.update(fields)
    return doc


def referral_code(code, referrer_email, **fields):
    defaults = {
        "isReferral": True,
        "referrerEmail": referrer_email,
        "referrerRewardAvailable": False,
        "friendUsesRemaining": 1,
    }
    defaults.update(fields)
    return promo_code(code, **defaults)


def salon_code(code, **fields):
    defaults = {
        "isSalonReferral": True,
        "salonName": "Glow Studio",
        "salonEmail": "owner@glowstudio.com",
        "salonUsageLimit": None,
        "salonUsedCount": 0,
        "commissionTotal": 0,
        "commissionPaid": 0,
        "clientDiscountPercent": 10,
    }
    defaults.update(fields)
    return promo_code(code, **defaults)
