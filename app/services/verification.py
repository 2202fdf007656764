"""
Workbook verification tokens.

Each generated workbook embeds a fresh random token which is stored on the
RFQ supplier record, overwriting the previous one: only the most recently
generated workbook can be uploaded. Token read-modify-write (regenerate,
verify-and-apply) runs under ``token_lock`` so a regeneration cannot
interleave with an upload for the same (RFQ, supplier) pair.
"""
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Generator, Tuple

from sqlalchemy.orm import Session

from app.core.errors import NotFoundError
from app.core.logging import get_logger, mask_token
from app.db.models import RFQSupplier

logger = get_logger(__name__)


class _PairLock:
    """A lock plus the number of callers holding or waiting for it."""

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


# Entries live only while some caller holds or waits on the pair
_pair_locks: Dict[Tuple[int, str], _PairLock] = {}
_registry_lock = threading.Lock()


@contextmanager
def _pair_lock(rfq_id: int, supplier_id: str) -> Generator[None, None, None]:
    key = (int(rfq_id), str(supplier_id))
    with _registry_lock:
        entry = _pair_locks.get(key)
        if entry is None:
            entry = _pair_locks[key] = _PairLock()
        entry.users += 1
    try:
        with entry.lock:
            yield
    finally:
        with _registry_lock:
            entry.users -= 1
            if entry.users == 0:
                del _pair_locks[key]


@contextmanager
def token_lock(db: Session, rfq_id: int, supplier_id: str) -> Generator[RFQSupplier, None, None]:
    """
    Exclusive access to one supplier record's token.

    Serialises callers in this process with a per-pair lock and callers in
    other processes with a row lock (SELECT ... FOR UPDATE, a no-op on
    SQLite). Commit inside the block so the row lock is released with it.
    """
    with _pair_lock(rfq_id, supplier_id):
        supplier = (
            db.query(RFQSupplier)
            .filter(RFQSupplier.rfq_id == rfq_id, RFQSupplier.supplier_id == str(supplier_id))
            .with_for_update()
            .first()
        )
        if supplier is None:
            raise NotFoundError(f"Supplier {supplier_id} is not part of RFQ {rfq_id}")
        yield supplier


def new_token() -> str:
    return str(uuid.uuid4())


def issue_token(db: Session, supplier: RFQSupplier) -> str:
    """Generate and store a new token, invalidating any earlier workbook."""
    token = new_token()
    supplier.excel_uuid = token
    supplier.excel_generated_at = datetime.now(timezone.utc)
    db.flush()
    logger.info(
        f"Issued workbook token {mask_token(token)} for supplier {supplier.supplier_id}",
        extra={"rfq_id": supplier.rfq_id, "supplier_id": supplier.supplier_id},
    )
    return token
