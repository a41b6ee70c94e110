from __future__ import annotations
from fastapi import APIRouter, Depends
import logging
from typing import List, Optional
from sqlalchemy.orm import Session

from vaultgate.api.deps import get_db
from vaultgate.models.schemas import LeadResponse, LeadUpsert, ScanResponse
from vaultgate.services import leads_repo, scans_repo

router = APIRouter()
logger = logging.getLogger("vaultgate.api.leads")


@router.post("/", response_model=LeadResponse)
def upsert_lead(body: LeadUpsert, db: Session = Depends(get_db)):
    """Create or update a lead by email."""
    lead = leads_repo.upsert_lead(db, body, event_id=body.event_id, attribution=body.attribution)
    db.commit()
    db.refresh(lead)
    return lead


@router.get("/{lead_id}", response_model=Optional[LeadResponse])
def get_lead(lead_id: int, db: Session = Depends(get_db)):
    """The lead, or null when no lead has this id."""
    lead = leads_repo.get_lead(db, lead_id)
    if lead is None:
        logger.info("Lead %s not found", lead_id)
    return lead


@router.get("/{lead_id}/scans", response_model=List[ScanResponse])
def list_lead_scans(lead_id: int, db: Session = Depends(get_db)):
    """Scans of a lead, newest first."""
    scans = scans_repo.list_scans(db, lead_id)
    logger.info("GET scans lead_id=%s count=%d", lead_id, len(scans))
    return scans


@router.get("/{lead_id}/scans/latest", response_model=Optional[ScanResponse])
def latest_lead_scan(lead_id: int, db: Session = Depends(get_db)):
    return scans_repo.latest_scan(db, lead_id)
