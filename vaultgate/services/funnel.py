# vaultgate/services/funnel.py
"""
Vault funnel state machine.

Navigation is an explicit table of (step, event) -> target, checked once when
the table is built. ``reduce`` is a pure function over VaultReducerState;
``VaultFunnel`` runs it and mirrors every durable change into the SessionStore
before the new state becomes current.
"""
from __future__ import annotations

import logging
from collections import deque
from enum import Enum
from typing import Annotated, Any, Callable, Dict, Literal, Mapping, Optional, Set, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from vaultgate.models.vault import (
    BranchChoice,
    EscalationFormData,
    FileMetadata,
    FormValues,
    FunnelStep,
    LeadFormData,
    PivotFormData,
    ProjectDetailsFormData,
    ScanResult,
    SessionRecord,
    WireModel,
)
from vaultgate.services.event_ids import generate_event_id
from vaultgate.services.session_store import SessionStore

logger = logging.getLogger("vaultgate.funnel")


class FunnelEvent(str, Enum):
    NEXT = "NEXT"
    EXIT_INTENT = "EXIT_INTENT"
    RESUME_FROM_EXIT = "RESUME_FROM_EXIT"
    RESET = "RESET"


# Target placeholder: the step recorded when the exit intercept opened
INTERRUPTED = "interrupted"

Target = Union[FunnelStep, Dict[BranchChoice, FunnelStep], str]

S = FunnelStep
E = FunnelEvent

DEFAULT_TRANSITIONS: Dict[FunnelStep, Dict[FunnelEvent, Target]] = {
    S.LEAD_CAPTURE: {
        E.NEXT: S.PIVOT_QUESTION,
        E.RESET: S.LEAD_CAPTURE,
    },
    S.PIVOT_QUESTION: {
        E.NEXT: {BranchChoice.YES: S.SCANNER_UPLOAD, BranchChoice.NO: S.FINAL_ESCALATION},
        E.EXIT_INTENT: S.EXIT_INTERCEPT,
        E.RESET: S.LEAD_CAPTURE,
    },
    S.SCANNER_UPLOAD: {
        E.NEXT: S.ANALYSIS_THEATER,
        E.EXIT_INTENT: S.EXIT_INTERCEPT,
        E.RESET: S.LEAD_CAPTURE,
    },
    S.ANALYSIS_THEATER: {
        E.NEXT: S.RESULT_DISPLAY,
        E.EXIT_INTENT: S.EXIT_INTERCEPT,
        E.RESET: S.LEAD_CAPTURE,
    },
    S.RESULT_DISPLAY: {
        E.NEXT: S.VAULT_CONFIRMATION,
        E.EXIT_INTENT: S.EXIT_INTERCEPT,
        E.RESET: S.LEAD_CAPTURE,
    },
    S.VAULT_CONFIRMATION: {
        E.NEXT: S.PROJECT_DETAILS,
        E.EXIT_INTENT: S.EXIT_INTERCEPT,
        E.RESET: S.LEAD_CAPTURE,
    },
    S.PROJECT_DETAILS: {
        E.NEXT: S.FINAL_ESCALATION,
        E.EXIT_INTENT: S.EXIT_INTERCEPT,
        E.RESET: S.LEAD_CAPTURE,
    },
    S.FINAL_ESCALATION: {
        E.NEXT: S.SUCCESS,
        E.EXIT_INTENT: S.EXIT_INTERCEPT,
        E.RESET: S.LEAD_CAPTURE,
    },
    S.SUCCESS: {
        E.RESET: S.LEAD_CAPTURE,
    },
    S.EXIT_INTERCEPT: {
        E.RESUME_FROM_EXIT: INTERRUPTED,
        E.RESET: S.LEAD_CAPTURE,
    },
}


class TransitionTableError(ValueError):
    pass


class TransitionTable:
    def __init__(self, rows: Mapping[FunnelStep, Mapping[FunnelEvent, Target]] = DEFAULT_TRANSITIONS):
        self._rows: Dict[FunnelStep, Dict[FunnelEvent, Target]] = {
            step: dict(row) for step, row in rows.items()
        }
        self._validate()

    # ---------- construction checks ----------
    def _validate(self) -> None:
        missing = set(FunnelStep) - set(self._rows)
        if missing:
            raise TransitionTableError(f"no transitions for steps: {sorted(s.value for s in missing)}")

        interruptible = set(FunnelStep) - {S.LEAD_CAPTURE, S.SUCCESS, S.EXIT_INTERCEPT}
        for step, row in self._rows.items():
            if row.get(E.RESET) is not S.LEAD_CAPTURE:
                raise TransitionTableError(f"RESET from {step.value} must land on lead_capture")
            if (E.EXIT_INTENT in row) != (step in interruptible):
                raise TransitionTableError(f"EXIT_INTENT misconfigured for {step.value}")
            if E.EXIT_INTENT in row and row[E.EXIT_INTENT] is not S.EXIT_INTERCEPT:
                raise TransitionTableError(f"EXIT_INTENT from {step.value} must open exit_intercept")
            if (E.RESUME_FROM_EXIT in row) != (step is S.EXIT_INTERCEPT):
                raise TransitionTableError(f"RESUME_FROM_EXIT misconfigured for {step.value}")
            for event, target in row.items():
                self._check_target(step, event, target)

        if set(self._rows[S.SUCCESS]) != {E.RESET}:
            raise TransitionTableError("success is terminal: only RESET may leave it")

        unreachable = set(FunnelStep) - self._reachable_from(S.LEAD_CAPTURE)
        if unreachable:
            raise TransitionTableError(f"unreachable steps: {sorted(s.value for s in unreachable)}")

    @staticmethod
    def _check_target(step: FunnelStep, event: FunnelEvent, target: Target) -> None:
        if isinstance(target, FunnelStep):
            return
        if isinstance(target, dict):
            if set(target) != {BranchChoice.YES, BranchChoice.NO}:
                raise TransitionTableError(f"branch targets from {step.value} must cover yes and no")
            if not all(isinstance(t, FunnelStep) for t in target.values()):
                raise TransitionTableError(f"branch targets from {step.value} must be steps")
            return
        if target == INTERRUPTED and event is E.RESUME_FROM_EXIT:
            return
        raise TransitionTableError(f"invalid target {target!r} for {step.value} on {event.value}")

    def _reachable_from(self, start: FunnelStep) -> Set[FunnelStep]:
        seen = {start}
        queue = deque([start])
        while queue:
            step = queue.popleft()
            for target in self._rows[step].values():
                targets = target.values() if isinstance(target, dict) else [target]
                for t in targets:
                    if isinstance(t, FunnelStep) and t not in seen:
                        seen.add(t)
                        queue.append(t)
        return seen

    # ---------- lookups ----------
    def target(
        self,
        step: FunnelStep,
        event: FunnelEvent,
        *,
        branch: BranchChoice = BranchChoice.UNSET,
        interrupted: Optional[FunnelStep] = None,
    ) -> Optional[FunnelStep]:
        """Next step, or None when the event is not legal from ``step``."""
        target = self._rows[step].get(event)
        if isinstance(target, dict):
            return target.get(branch)
        if target == INTERRUPTED:
            return interrupted
        return target

    def events(self, step: FunnelStep) -> Set[FunnelEvent]:
        return set(self._rows[step])


DEFAULT_TABLE = TransitionTable()


# ---------- Reducer state ----------
class VaultReducerState(BaseModel):
    model_config = ConfigDict(frozen=True)

    current_step: FunnelStep = FunnelStep.LEAD_CAPTURE
    previous_step: Optional[FunnelStep] = None
    lead_id: Optional[str] = None
    event_id: str
    branch_choice: BranchChoice = BranchChoice.UNSET
    form_values: FormValues = Field(default_factory=FormValues)
    scan_result: Optional[ScanResult] = None
    file_metadata: Optional[FileMetadata] = None
    exit_from_step: Optional[FunnelStep] = None

    @property
    def is_exit_intercept_active(self) -> bool:
        return self.current_step is FunnelStep.EXIT_INTERCEPT

    @classmethod
    def from_session(cls, record: SessionRecord) -> "VaultReducerState":
        return cls(**{f: getattr(record, f) for f in DURABLE_FIELDS}, event_id=record.event_id)


# Reducer fields the SessionRecord mirrors
DURABLE_FIELDS = (
    "lead_id",
    "current_step",
    "branch_choice",
    "form_values",
    "scan_result",
    "file_metadata",
    "exit_from_step",
)


# ---------- Actions ----------
class Next(WireModel):
    type: Literal["NEXT"] = "NEXT"


class SetLeadId(WireModel):
    type: Literal["SET_LEAD_ID"] = "SET_LEAD_ID"
    payload: str = Field(..., min_length=1)


class SetBranch(WireModel):
    type: Literal["SET_BRANCH"] = "SET_BRANCH"
    payload: BranchChoice

    @field_validator("payload")
    @classmethod
    def _decided(cls, v: BranchChoice) -> BranchChoice:
        if v is BranchChoice.UNSET:
            raise ValueError("branch must be yes or no")
        return v


class SetLeadForm(WireModel):
    type: Literal["SET_LEAD_FORM"] = "SET_LEAD_FORM"
    payload: LeadFormData


class SetPivotForm(WireModel):
    type: Literal["SET_PIVOT_FORM"] = "SET_PIVOT_FORM"
    payload: PivotFormData


class SetProjectDetails(WireModel):
    type: Literal["SET_PROJECT_DETAILS"] = "SET_PROJECT_DETAILS"
    payload: ProjectDetailsFormData


class SetEscalation(WireModel):
    type: Literal["SET_ESCALATION"] = "SET_ESCALATION"
    payload: EscalationFormData


class SetScanResults(WireModel):
    type: Literal["SET_SCAN_RESULTS"] = "SET_SCAN_RESULTS"
    payload: ScanResult


class SetFileMetadata(WireModel):
    type: Literal["SET_FILE_METADATA"] = "SET_FILE_METADATA"
    payload: FileMetadata


class ShowExitIntercept(WireModel):
    type: Literal["SHOW_EXIT_INTERCEPT"] = "SHOW_EXIT_INTERCEPT"


class ResumeFromExit(WireModel):
    type: Literal["RESUME_FROM_EXIT"] = "RESUME_FROM_EXIT"


class Reset(WireModel):
    type: Literal["RESET"] = "RESET"
    # minted when the action is built so reduce() stays pure
    event_id: str = Field(default_factory=generate_event_id, min_length=1)


VaultAction = Annotated[
    Union[
        Next,
        SetLeadId,
        SetBranch,
        SetLeadForm,
        SetPivotForm,
        SetProjectDetails,
        SetEscalation,
        SetScanResults,
        SetFileMetadata,
        ShowExitIntercept,
        ResumeFromExit,
        Reset,
    ],
    Field(discriminator="type"),
]


class ClientReset(WireModel):
    """RESET as a browser sends it. The server mints the new event id."""
    model_config = ConfigDict(extra="forbid")

    type: Literal["RESET"] = "RESET"

    def to_action(self) -> Reset:
        return Reset()


# Actions accepted from browsers. SET_LEAD_ID is issued only by the server
# after a lead submission succeeds.
ClientAction = Annotated[
    Union[
        Next,
        SetBranch,
        SetLeadForm,
        SetPivotForm,
        SetProjectDetails,
        SetEscalation,
        SetScanResults,
        SetFileMetadata,
        ShowExitIntercept,
        ResumeFromExit,
        ClientReset,
    ],
    Field(discriminator="type"),
]


# ---------- Reducer ----------
def _move(state: VaultReducerState, table: TransitionTable, event: FunnelEvent) -> VaultReducerState:
    step = state.current_step
    if event is E.NEXT and step is S.LEAD_CAPTURE and state.lead_id is None:
        # the lead has to exist server-side before the funnel moves on
        return state
    target = table.target(step, event, branch=state.branch_choice, interrupted=state.exit_from_step)
    if target is None:
        logger.debug("ignored %s from %s", event.value, step.value)
        return state
    update: Dict[str, Any] = {"previous_step": step, "current_step": target}
    if target is S.EXIT_INTERCEPT:
        update["exit_from_step"] = step
    elif step is S.EXIT_INTERCEPT:
        update["exit_from_step"] = None
    return state.model_copy(update=update)


def _reset(state: VaultReducerState, action: Reset, table: TransitionTable) -> VaultReducerState:
    return VaultReducerState(
        current_step=table.target(state.current_step, E.RESET),
        event_id=action.event_id,
    )


def _set_lead_id(state: VaultReducerState, action: SetLeadId, table: TransitionTable) -> VaultReducerState:
    if state.lead_id is None:
        return state.model_copy(update={"lead_id": action.payload})
    if state.lead_id != action.payload:
        logger.warning("lead_id already %s, ignoring %s", state.lead_id, action.payload)
    return state


def _set_branch(state: VaultReducerState, action: SetBranch, table: TransitionTable) -> VaultReducerState:
    if state.current_step is not S.PIVOT_QUESTION or state.branch_choice is action.payload:
        return state
    return state.model_copy(update={"branch_choice": action.payload})


def _set_form(state: VaultReducerState, action: Any, table: TransitionTable) -> VaultReducerState:
    return state.model_copy(update={"form_values": state.form_values.with_form(action.payload)})


_HANDLERS: Dict[str, Callable[[VaultReducerState, Any, TransitionTable], VaultReducerState]] = {
    "NEXT": lambda s, a, t: _move(s, t, E.NEXT),
    "SHOW_EXIT_INTERCEPT": lambda s, a, t: _move(s, t, E.EXIT_INTENT),
    "RESUME_FROM_EXIT": lambda s, a, t: _move(s, t, E.RESUME_FROM_EXIT),
    "RESET": _reset,
    "SET_LEAD_ID": _set_lead_id,
    "SET_BRANCH": _set_branch,
    "SET_LEAD_FORM": _set_form,
    "SET_PIVOT_FORM": _set_form,
    "SET_PROJECT_DETAILS": _set_form,
    "SET_ESCALATION": _set_form,
    "SET_SCAN_RESULTS": lambda s, a, t: s.model_copy(update={"scan_result": a.payload}),
    "SET_FILE_METADATA": lambda s, a, t: s.model_copy(update={"file_metadata": a.payload}),
}


def reduce(state: VaultReducerState, action: VaultAction, table: TransitionTable = DEFAULT_TABLE) -> VaultReducerState:
    """Next state for ``action``; the same object when nothing changes."""
    handler = _HANDLERS.get(getattr(action, "type", None))
    if handler is None:
        return state
    return handler(state, action, table)


# ---------- Funnel (reducer + durable projection) ----------
class VaultFunnel:
    def __init__(self, store: SessionStore, table: TransitionTable = DEFAULT_TABLE):
        self.store = store
        self.table = table
        self.state = VaultReducerState.from_session(store.session)

    @property
    def can_resume(self) -> bool:
        return self.store.can_resume

    def dispatch(self, action: VaultAction) -> VaultReducerState:
        nxt = reduce(self.state, action, self.table)
        if nxt is self.state:
            return self.state

        if isinstance(action, Reset):
            record = self.store.start_over(event_id=nxt.event_id)
            self.state = VaultReducerState.from_session(record)
            logger.info("funnel reset event_id=%s", record.event_id)
            return self.state

        changes = {f: getattr(nxt, f) for f in DURABLE_FIELDS if getattr(nxt, f) != getattr(self.state, f)}
        if changes:
            self.store.save(changes)
        if nxt.current_step is not self.state.current_step:
            logger.info("funnel %s -> %s event_id=%s", self.state.current_step.value, nxt.current_step.value, nxt.event_id)
        self.state = nxt
        return self.state

    def resume(self) -> VaultReducerState:
        record = self.store.resume()
        self.state = VaultReducerState.from_session(record)
        return self.state
