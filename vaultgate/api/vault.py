# vaultgate/api/vault.py
"""
Funnel endpoints. Every handler runs under the visitor's lock, so requests for
one session record are applied one at a time.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from pydantic import TypeAdapter, ValidationError
from sqlalchemy.orm import Session

from vaultgate.api.deps import (
    BrowsingContext,
    browsing_context,
    get_attribution_capture,
    get_db,
    get_store_factory,
)
from vaultgate.models.schemas import FunnelStateResponse
from vaultgate.models.vault import AttributionRecord, FunnelStep, LeadFormData
from vaultgate.services import leads_repo, scans_repo, session_service
from vaultgate.services.attribution import AttributionCapture
from vaultgate.services.funnel import (
    ClientAction,
    ClientReset,
    Next,
    Reset,
    SetEscalation,
    SetFileMetadata,
    SetLeadForm,
    SetLeadId,
    SetPivotForm,
    SetProjectDetails,
    SetScanResults,
    VaultFunnel,
    VaultReducerState,
)
from vaultgate.services.lead_validator import parse_lead_id
from vaultgate.services.session_service import StoreFactory
from vaultgate.services.session_store import ImmutableFieldError, ResumeNotAllowed

logger = logging.getLogger("vaultgate.api.vault")
router = APIRouter()

_CLIENT_ACTION = TypeAdapter(ClientAction)
_LEAD_FORM_ACTIONS = (SetPivotForm, SetProjectDetails, SetEscalation)
_SCAN_ACTIONS = (SetFileMetadata, SetScanResults)


def _view(funnel: VaultFunnel, attribution: AttributionRecord) -> FunnelStateResponse:
    s = funnel.state
    return FunnelStateResponse(
        current_step=s.current_step,
        previous_step=s.previous_step,
        lead_id=s.lead_id,
        event_id=s.event_id,
        branch_choice=s.branch_choice,
        form_values=s.form_values,
        scan_result=s.scan_result,
        file_metadata=s.file_metadata,
        is_exit_intercept_active=s.is_exit_intercept_active,
        exit_from_step=s.exit_from_step,
        can_resume=funnel.can_resume,
        attribution=attribution,
    )


def _mirror_to_lead(db: Session, action: Any, state: VaultReducerState) -> None:
    """Copy step answers and scans onto the session's lead, when it has one."""
    if not isinstance(action, _LEAD_FORM_ACTIONS + _SCAN_ACTIONS):
        return
    lead_id = parse_lead_id(state.lead_id)
    if lead_id is None:
        return
    lead = leads_repo.get_lead(db, lead_id)
    if lead is None:
        logger.warning("lead_id=%s of event_id=%s not in leads table", lead_id, state.event_id)
        return

    if isinstance(action, SetFileMetadata):
        scans_repo.record_file(db, lead, event_id=state.event_id, meta=action.payload)
    elif isinstance(action, SetScanResults):
        scans_repo.record_result(db, lead, event_id=state.event_id, result=action.payload)
    else:
        leads_repo.apply_step_form(db, lead, action.payload)
    db.commit()


@router.get("/session", response_model=FunnelStateResponse)
def load_session(
    request: Request,
    page: Optional[str] = Query(None, description="URL of the page the visitor landed on"),
    referrer: Optional[str] = Query(None),
    browsing: BrowsingContext = Depends(browsing_context),
    capture: AttributionCapture = Depends(get_attribution_capture),
    store_factory: StoreFactory = Depends(get_store_factory),
):
    """
    Page load: capture first-touch attribution, then load (and revalidate) the
    durable session. Marketing parameters are read from this request's query.
    """
    attribution = capture.capture(
        request.query_params,
        request.cookies,
        referrer=referrer or request.headers.get("referer"),
        landing_page=page,
    )
    with session_service.locked(browsing.visitor_id) as ctx:
        funnel = session_service.open_funnel(ctx, store_factory)
        return _view(funnel, attribution)


@router.get("/attribution", response_model=AttributionRecord)
def get_attribution(capture: AttributionCapture = Depends(get_attribution_capture)):
    return capture.current()


@router.post("/actions", response_model=FunnelStateResponse)
def dispatch_action(
    body: Dict[str, Any] = Body(...),
    browsing: BrowsingContext = Depends(browsing_context),
    capture: AttributionCapture = Depends(get_attribution_capture),
    store_factory: StoreFactory = Depends(get_store_factory),
    db: Session = Depends(get_db),
):
    try:
        action = _CLIENT_ACTION.validate_python(body)
    except ValidationError as e:
        raise RequestValidationError(e.errors(include_url=False))
    if isinstance(action, ClientReset):
        action = action.to_action()

    with session_service.locked(browsing.visitor_id) as ctx:
        funnel = session_service.get_funnel(ctx, store_factory)
        try:
            state = funnel.dispatch(action)
        except ImmutableFieldError as e:
            raise HTTPException(status_code=409, detail=str(e))

        _mirror_to_lead(db, action, state)
        logger.info("action %s visitor=%s step=%s", action.type, browsing.visitor_id, state.current_step.value)
        return _view(funnel, capture.current())


@router.post("/lead", response_model=FunnelStateResponse)
def submit_lead(
    form: LeadFormData,
    browsing: BrowsingContext = Depends(browsing_context),
    capture: AttributionCapture = Depends(get_attribution_capture),
    store_factory: StoreFactory = Depends(get_store_factory),
    db: Session = Depends(get_db),
):
    if form.honeypot:
        logger.warning("lead rejected: honeypot filled visitor=%s", browsing.visitor_id)
        raise HTTPException(status_code=400, detail="Submission rejected")

    attribution = capture.current()
    with session_service.locked(browsing.visitor_id) as ctx:
        funnel = session_service.get_funnel(ctx, store_factory)
        if funnel.state.lead_id is not None:
            # repeat submission of an already captured lead
            logger.info("lead already captured lead_id=%s visitor=%s", funnel.state.lead_id, browsing.visitor_id)
            return _view(funnel, attribution)
        if funnel.state.current_step is not FunnelStep.LEAD_CAPTURE:
            raise HTTPException(status_code=409, detail="Lead capture is not the current step")

        lead = leads_repo.upsert_lead(db, form, event_id=funnel.state.event_id, attribution=attribution)
        db.commit()

        funnel.dispatch(SetLeadForm(payload=form.model_copy(update={"honeypot": None})))
        funnel.dispatch(SetLeadId(payload=str(lead.id)))
        funnel.dispatch(Next())
        return _view(funnel, attribution)


@router.post("/resume", response_model=FunnelStateResponse)
def resume_session(
    browsing: BrowsingContext = Depends(browsing_context),
    capture: AttributionCapture = Depends(get_attribution_capture),
    store_factory: StoreFactory = Depends(get_store_factory),
):
    with session_service.locked(browsing.visitor_id) as ctx:
        funnel = session_service.get_funnel(ctx, store_factory)
        try:
            funnel.resume()
        except ResumeNotAllowed as e:
            raise HTTPException(status_code=409, detail=str(e))
        return _view(funnel, capture.current())


@router.post("/start-over", response_model=FunnelStateResponse)
def start_over(
    browsing: BrowsingContext = Depends(browsing_context),
    capture: AttributionCapture = Depends(get_attribution_capture),
    store_factory: StoreFactory = Depends(get_store_factory),
):
    with session_service.locked(browsing.visitor_id) as ctx:
        funnel = session_service.get_funnel(ctx, store_factory)
        funnel.dispatch(Reset())
        return _view(funnel, capture.current())
