
import copy
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Tuple

from sqlalchemy import insert, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from promo_engine.exceptions import StorageUnavailable
from promo_engine.models.document import Document

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VersionedWrite:
    """Replace ``key`` with ``value`` only if it is still at ``version`` (0 = absent)."""

    key: str
    value: Dict[str, Any]
    version: int


class DocumentStore(Protocol):
    def get_for_update(self, key: str) -> Tuple[Optional[Dict[str, Any]], int]: ...

    def put_if_version(self, key: str, value: Dict[str, Any], version: int) -> bool: ...

    def commit(self, writes: List[VersionedWrite]) -> bool: ...


class SqlDocumentStore:
    """Versioned JSON documents on top of the ``documents`` table.

    Reads never lock. Writes are compare-and-swap on the version column and
    a batch passed to :meth:`commit` lands in one transaction, so either every
    document moves to its next version or none does.
    """

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def get_for_update(self, key: str) -> Tuple[Optional[Dict[str, Any]], int]:
        db = self._session_factory()
        try:
            doc = db.get(Document, key)
            if doc is None:
                return None, 0
            return copy.deepcopy(doc.body), doc.version
        except SQLAlchemyError as e:
            logger.error(f"Failed to read document '{key}': {e}")
            raise StorageUnavailable() from e
        finally:
            db.close()

    def put_if_version(self, key: str, value: Dict[str, Any], version: int) -> bool:
        return self.commit([VersionedWrite(key=key, value=value, version=version)])

    def commit(self, writes: List[VersionedWrite]) -> bool:
        if not writes:
            return True

        now = datetime.now(timezone.utc)
        db = self._session_factory()
        try:
            for write in writes:
                if write.version == 0:
                    # Losing an insert race shows up as IntegrityError below
                    db.execute(
                        insert(Document).values(key=write.key, body=write.value, version=1, updated_at=now)
                    )
                    continue

                result = db.execute(
                    update(Document)
                    .where(Document.key == write.key, Document.version == write.version)
                    .values(body=write.value, version=write.version + 1, updated_at=now)
                )
                if result.rowcount != 1:
                    logger.debug(f"Version conflict on '{write.key}' at version {write.version}")
                    db.rollback()
                    return False

            db.commit()
            return True
        except IntegrityError:
            db.rollback()
            logger.debug(f"Insert conflict while writing {[w.key for w in writes]}")
            return False
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to write documents {[w.key for w in writes]}: {e}")
            raise StorageUnavailable() from e
        finally:
            db.close()
