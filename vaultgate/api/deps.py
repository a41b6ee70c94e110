# vaultgate/api/deps.py
from dataclasses import dataclass

from fastapi import Depends, Request, Response

from vaultgate.core.config import (
    BROWSING_SESSION_COOKIE,
    COOKIE_SECURE,
    VISITOR_COOKIE,
    VISITOR_COOKIE_MAX_AGE,
)
from vaultgate.core.db import get_db  # noqa: F401  (re-exported for routers)
from vaultgate.services.attribution import AttributionCapture
from vaultgate.services.event_ids import generate_browsing_session_id, generate_visitor_id
from vaultgate.services.lead_validator import LeadExistenceValidator
from vaultgate.services.session_service import StoreFactory
from vaultgate.services.session_store import SessionStore
from vaultgate.services.storage import LOCAL, SESSION, SqlStorage


@dataclass
class BrowsingContext:
    visitor_id: str  # owns the durable session record
    browsing_session_id: str  # owns attribution; cookie dies with the browser session


def browsing_context(request: Request, response: Response) -> BrowsingContext:
    visitor_id = request.cookies.get(VISITOR_COOKIE)
    if not visitor_id:
        visitor_id = generate_visitor_id()
        response.set_cookie(
            VISITOR_COOKIE,
            visitor_id,
            max_age=VISITOR_COOKIE_MAX_AGE,
            httponly=True,
            samesite="lax",
            secure=COOKIE_SECURE,
        )
    browsing_session_id = request.cookies.get(BROWSING_SESSION_COOKIE)
    if not browsing_session_id:
        browsing_session_id = generate_browsing_session_id()
        # no max_age: a browser-session cookie
        response.set_cookie(
            BROWSING_SESSION_COOKIE,
            browsing_session_id,
            httponly=True,
            samesite="lax",
            secure=COOKIE_SECURE,
        )
    return BrowsingContext(visitor_id=visitor_id, browsing_session_id=browsing_session_id)


_validator = LeadExistenceValidator()


def get_lead_validator() -> LeadExistenceValidator:
    return _validator


def get_store_factory(validator: LeadExistenceValidator = Depends(get_lead_validator)) -> StoreFactory:
    def factory(visitor_id: str) -> SessionStore:
        return SessionStore(SqlStorage(LOCAL, visitor_id), validator)
    return factory


def get_attribution_capture(ctx: BrowsingContext = Depends(browsing_context)) -> AttributionCapture:
    return AttributionCapture(SqlStorage(SESSION, ctx.browsing_session_id))
