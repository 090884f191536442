from datetime import datetime
from typing import Any, Dict, List, Tuple

from promo_engine.exceptions import WelcomeDiscountUsed
from promo_engine.services.document_store import DocumentStore, VersionedWrite


class WelcomeDiscountTracker:
    """One welcome discount per email, across every auto-generated welcome code."""

    KEY = "welcome-discount-recipients"

    def __init__(self, store: DocumentStore):
        self.store = store

    def load(self) -> Tuple[List[Dict[str, Any]], int]:
        doc, version = self.store.get_for_update(self.KEY)
        recipients = (doc or {}).get("recipients")
        return (list(recipients) if isinstance(recipients, list) else []), version

    @staticmethod
    def ensure_unused(recipients: List[Dict[str, Any]], email: str) -> None:
        for recipient in recipients:
            if str(recipient.get("email", "")).lower() == email and recipient.get("usedAt"):
                raise WelcomeDiscountUsed()

    @staticmethod
    def mark_used(recipients: List[Dict[str, Any]], email: str, code: str, now: datetime) -> List[Dict[str, Any]]:
        used_at = now.isoformat()
        updated = []
        found = False
        for recipient in recipients:
            if not found and str(recipient.get("email", "")).lower() == email:
                recipient = dict(recipient, usedAt=used_at)
                recipient.setdefault("promoCode", code)
                found = True
            updated.append(recipient)
        if not found:
            updated.append({"email": email, "receivedAt": used_at, "promoCode": code, "usedAt": used_at})
        return updated

    def write(self, recipients: List[Dict[str, Any]], version: int) -> VersionedWrite:
        return VersionedWrite(key=self.KEY, value={"recipients": recipients}, version=version)
