# vaultgate/services/scans_repo.py
import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from vaultgate.models.orm import Lead, Scan
from vaultgate.models.vault import FileMetadata, ScanResult

logger = logging.getLogger("vaultgate.scans")


def list_scans(db: Session, lead_id: int) -> List[Scan]:
    """Newest first."""
    stmt = select(Scan).where(Scan.lead_id == lead_id).order_by(Scan.id.desc())
    return list(db.scalars(stmt))


def latest_scan(db: Session, lead_id: int) -> Optional[Scan]:
    stmt = select(Scan).where(Scan.lead_id == lead_id).order_by(Scan.id.desc()).limit(1)
    return db.scalars(stmt).first()


def _open_scan(db: Session, lead: Lead, event_id: str) -> Optional[Scan]:
    # latest scan of this funnel session still waiting for scores
    stmt = (
        select(Scan)
        .where(Scan.lead_id == lead.id, Scan.event_id == event_id, Scan.status == "pending")
        .order_by(Scan.id.desc())
        .limit(1)
    )
    return db.scalars(stmt).first()


def record_file(db: Session, lead: Lead, *, event_id: str, meta: FileMetadata) -> Scan:
    """
    File details of an upload. Fills the pending scan of this session, or
    opens a new one when the previous upload was already scored.
    """
    scan = _open_scan(db, lead, event_id)
    created = scan is None
    if scan is None:
        scan = Scan(lead_id=lead.id, event_id=event_id, status="pending")
        db.add(scan)
    scan.original_filename = meta.name
    scan.file_mime = meta.type
    scan.file_size = meta.size
    scan.file_sha256 = meta.sha256
    scan.file_pages = meta.pages
    db.flush()
    logger.info("scan %s id=%s lead_id=%s file=%s", "opened" if created else "updated", scan.id, lead.id, meta.name)
    return scan


def record_result(db: Session, lead: Lead, *, event_id: str, result: ScanResult) -> Scan:
    """Scores for the pending scan of this session (a new row when none is pending)."""
    scan = _open_scan(db, lead, event_id)
    if scan is None:
        scan = Scan(lead_id=lead.id, event_id=event_id)
        db.add(scan)
    scan.status = "completed"
    scan.overall_score = result.overall_score
    scan.safety_score = result.safety_score
    scan.scope_score = result.scope_score
    scan.price_score = result.price_score
    scan.fine_print_score = result.fine_print_score
    scan.warranty_score = result.warranty_score
    scan.warnings = list(result.warnings)
    scan.missing_items = list(result.missing_items)
    if result.estimated_savings is not None:
        scan.savings_low = result.estimated_savings.low
        scan.savings_high = result.estimated_savings.high
    scan.raw_result = result.raw_result
    db.flush()
    logger.info("scan completed id=%s lead_id=%s overall=%s", scan.id, lead.id, scan.overall_score)
    return scan
