# vaultgate/services/leads_repo.py
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from vaultgate.models.orm import Lead
from vaultgate.models.vault import (
    AttributionRecord,
    EscalationFormData,
    LeadFormData,
    PivotFormData,
    ProjectDetailsFormData,
    IDENTIFIER_FIELDS,
)

logger = logging.getLogger("vaultgate.leads")


def get_lead(db: Session, lead_id: int) -> Optional[Lead]:
    return db.get(Lead, lead_id)


def get_lead_by_email(db: Session, email: str) -> Optional[Lead]:
    stmt = select(Lead).where(Lead.email == email.strip().lower()).limit(1)
    return db.scalars(stmt).first()


def upsert_lead(
    db: Session,
    form: LeadFormData,
    *,
    event_id: Optional[str] = None,
    attribution: Optional[AttributionRecord] = None,
    source_tool: str = "vault",
) -> Lead:
    """
    Create or update the lead keyed by email.

    Attribution is first-touch here as well: fields already on the lead are
    never overwritten.
    """
    obj = get_lead_by_email(db, form.email)
    created = obj is None
    if obj is None:
        obj = Lead(email=form.email, first_name=form.first_name, source_tool=source_tool, event_id=event_id)
        db.add(obj)
    obj.first_name = form.first_name
    obj.last_name = form.last_name
    if form.zip:
        obj.zip = form.zip
    if not obj.event_id and event_id:
        obj.event_id = event_id

    if attribution is not None:
        for field in IDENTIFIER_FIELDS:
            value = getattr(attribution, field)
            if value and not getattr(obj, field):
                setattr(obj, field, value)

    db.flush()  # get ids
    logger.info("lead %s id=%s event_id=%s", "created" if created else "updated", obj.id, obj.event_id)
    return obj


def apply_step_form(db: Session, lead: Lead, form) -> Lead:
    """Copy a later step's answers onto the lead record."""
    if isinstance(form, PivotFormData):
        lead.has_quote = "yes" if form.has_estimate else "no"
        if form.phone:
            lead.phone = form.phone
    elif isinstance(form, ProjectDetailsFormData):
        lead.window_count = form.window_count
        lead.timeline = form.timeline
        lead.budget_range = form.budget_range
    elif isinstance(form, EscalationFormData):
        lead.callback_preference = form.callback_preference
        lead.callback_time = form.callback_time
    else:
        raise ValueError(f"unsupported step form: {type(form).__name__}")
    db.flush()
    logger.debug("lead id=%s updated from %s", lead.id, form.step)
    return lead
