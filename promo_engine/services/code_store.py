from typing import Tuple

from promo_engine.schemas.promo import PromoCatalog
from promo_engine.services.document_store import DocumentStore, VersionedWrite


class CodeStore:
    """Loads and stages writes of the ``promo-codes`` document."""

    KEY = "promo-codes"

    def __init__(self, store: DocumentStore):
        self.store = store

    def load(self) -> Tuple[PromoCatalog, int]:
        doc, version = self.store.get_for_update(self.KEY)
        return PromoCatalog.model_validate(doc or {}), version

    def write(self, catalog: PromoCatalog, version: int) -> VersionedWrite:
        return VersionedWrite(key=self.KEY, value=catalog.to_document(), version=version)
