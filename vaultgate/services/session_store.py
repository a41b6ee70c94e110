# vaultgate/services/session_store.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping, Optional, Protocol

from pydantic import ValidationError

from vaultgate.core.config import SESSION_MAX_AGE_DAYS, SESSION_STORAGE_KEY
from vaultgate.models.vault import FunnelStep, SessionRecord, utcnow
from vaultgate.services.event_ids import generate_event_id
from vaultgate.services.storage import KeyValueStorage

logger = logging.getLogger("vaultgate.session")

# Steps a restored session is never resumed into
_NO_RESUME_STEPS = (FunnelStep.LEAD_CAPTURE, FunnelStep.SUCCESS)
_IMMUTABLE_FIELDS = ("event_id", "created_at")


class LeadChecker(Protocol):
    def exists(self, lead_id: Any) -> bool: ...


class ImmutableFieldError(ValueError):
    pass


class ResumeNotAllowed(RuntimeError):
    pass


class SessionStore:
    """
    Owns the durable SessionRecord of one browsing context.

    Every mutation is validated, written through to storage, and only then
    becomes the in-memory record, so a failed write leaves the previous record
    authoritative.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        validator: LeadChecker,
        *,
        key: str = SESSION_STORAGE_KEY,
        max_age: timedelta = timedelta(days=SESSION_MAX_AGE_DAYS),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage
        self.validator = validator
        self.key = key
        self.max_age = max_age
        self.clock = clock
        self._session: Optional[SessionRecord] = None
        self._can_resume = False

    # ---------- state ----------
    @property
    def session(self) -> SessionRecord:
        if self._session is None:
            raise RuntimeError("session not loaded; call load() first")
        return self._session

    @property
    def can_resume(self) -> bool:
        return self._can_resume

    @property
    def loaded(self) -> bool:
        return self._session is not None

    # ---------- helpers ----------
    def _fresh(self, event_id: Optional[str] = None) -> SessionRecord:
        now = self.clock()
        return SessionRecord(
            event_id=event_id or generate_event_id(),
            current_step=FunnelStep.LEAD_CAPTURE,
            created_at=now,
            updated_at=now,
        )

    def _commit(self, record: SessionRecord) -> SessionRecord:
        self.storage.set(self.key, record.to_json())
        self._session = record
        return record

    def _lead_exists(self, lead_id: str) -> bool:
        # fail open: a check that could not run does not discard the visitor's progress
        try:
            return self.validator.exists(lead_id)
        except Exception:
            logger.exception("lead check raised for lead_id=%s, assuming it exists", lead_id)
            return True

    def _restart(self, reason: str) -> SessionRecord:
        record = self._commit(self._fresh())
        self._can_resume = False
        logger.info("session fresh reason=%s event_id=%s", reason, record.event_id)
        return record

    # ---------- operations ----------
    def load(self) -> SessionRecord:
        raw = self.storage.get(self.key)
        if raw is None:
            return self._restart("absent")

        try:
            stored = SessionRecord.from_json(raw)
        except (ValidationError, ValueError) as e:
            logger.warning("session record unparsable, starting fresh: %s", e)
            return self._restart("corrupt")

        if stored.is_expired(self.clock(), self.max_age):
            logger.warning("session expired created_at=%s event_id=%s", stored.created_at.isoformat(), stored.event_id)
            return self._restart("expired")

        if stored.lead_id is not None:
            if not self._lead_exists(stored.lead_id):
                logger.info("lead_id=%s no longer exists, starting fresh", stored.lead_id)
                return self._restart("lead_missing")
            self._session = stored
            self._can_resume = stored.current_step not in _NO_RESUME_STEPS
            logger.info(
                "session restored lead_id=%s step=%s can_resume=%s",
                stored.lead_id, stored.current_step.value, self._can_resume,
            )
            return stored

        # nothing past lead capture to resume into
        self._session = stored
        self._can_resume = False
        logger.debug("session restored without lead step=%s", stored.current_step.value)
        return stored

    def save(self, update: Mapping[str, Any]) -> SessionRecord:
        current = self.session
        for field in _IMMUTABLE_FIELDS:
            if field in update:
                raise ImmutableFieldError(f"{field} cannot be changed for a session")
        if "lead_id" in update and current.lead_id is not None:
            new_lead_id = update["lead_id"]
            if new_lead_id is None or str(new_lead_id) != current.lead_id:
                raise ImmutableFieldError("lead_id is already set for this session")

        merged = {**current.model_dump(), **update, "updated_at": self.clock()}
        record = SessionRecord.model_validate(merged)
        self._commit(record)
        logger.debug("session saved fields=%s", sorted(update))
        return record

    def start_over(self, event_id: Optional[str] = None) -> SessionRecord:
        record = self._commit(self._fresh(event_id))
        self._can_resume = False
        logger.info("session started over event_id=%s", record.event_id)
        return record

    def resume(self) -> SessionRecord:
        if not self._can_resume:
            raise ResumeNotAllowed("session is not resumable")
        record = self.save({"current_step": FunnelStep.PIVOT_QUESTION, "exit_from_step": None})
        self._can_resume = False
        logger.info("session resumed lead_id=%s", record.lead_id)
        return record
