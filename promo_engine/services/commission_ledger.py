from typing import Any, Dict, List, Optional, Tuple

from promo_engine.schemas.promo import CommissionRecord
from promo_engine.services.document_store import DocumentStore, VersionedWrite


class CommissionLedger:
    """Append-only ``referrals-tracking`` document of salon commission records."""

    KEY = "referrals-tracking"
    # Older deployments kept the ledger under this name
    LEGACY_KEY = "salon-referrals"

    def __init__(self, store: DocumentStore):
        self.store = store

    def load(self) -> Tuple[List[Dict[str, Any]], int]:
        doc, version = self.store.get_for_update(self.KEY)
        referrals = self._entries(doc)
        if not referrals:
            legacy, _ = self.store.get_for_update(self.LEGACY_KEY)
            referrals = self._entries(legacy)
        return referrals, version

    @staticmethod
    def _entries(doc: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
        referrals = (doc or {}).get("referrals")
        return list(referrals) if isinstance(referrals, list) else []

    @staticmethod
    def append(referrals: List[Dict[str, Any]], record: CommissionRecord) -> List[Dict[str, Any]]:
        if any(isinstance(entry, dict) and entry.get("id") == record.id for entry in referrals):
            raise ValueError(f"Commission record {record.id} already exists")
        return referrals + [record.model_dump(by_alias=True, mode="json")]

    def write(self, referrals: List[Dict[str, Any]], version: int) -> VersionedWrite:
        return VersionedWrite(key=self.KEY, value={"referrals": referrals}, version=version)
