import pytest
from pydantic import TypeAdapter, ValidationError

from vaultgate.models.vault import (
    BranchChoice,
    EscalationFormData,
    FunnelStep,
    PivotFormData,
    ProjectDetailsFormData,
    SessionRecord,
)
from vaultgate.services.funnel import (
    ClientAction,
    ClientReset,
    DEFAULT_TABLE,
    DEFAULT_TRANSITIONS,
    FunnelEvent,
    Next,
    Reset,
    ResumeFromExit,
    SetBranch,
    SetEscalation,
    SetLeadId,
    SetPivotForm,
    SetProjectDetails,
    ShowExitIntercept,
    TransitionTable,
    TransitionTableError,
    VaultAction,
    VaultFunnel,
    VaultReducerState,
    reduce,
)
from vaultgate.services.session_store import SessionStore

S = FunnelStep


def _state(**kw):
    kw.setdefault("event_id", "wm_test_00000001")
    return VaultReducerState(**kw)


def _at(step, **kw):
    return _state(current_step=step, lead_id="1", **kw)


# ---------- reducer ----------
def test_next_from_lead_capture_needs_lead_id():
    s = _state()
    assert reduce(s, Next()) is s

    s = reduce(s, SetLeadId(payload="12"))
    s = reduce(s, Next())
    assert s.current_step is S.PIVOT_QUESTION
    assert s.previous_step is S.LEAD_CAPTURE


@pytest.mark.parametrize("branch, expected", [
    (BranchChoice.YES, S.SCANNER_UPLOAD),
    (BranchChoice.NO, S.FINAL_ESCALATION),
])
def test_pivot_branch_routing(branch, expected):
    s = reduce(_at(S.PIVOT_QUESTION), SetBranch(payload=branch))
    s = reduce(s, Next())
    assert s.current_step is expected
    assert s.branch_choice is branch


def test_next_at_pivot_without_branch_is_ignored():
    s = _at(S.PIVOT_QUESTION)
    assert reduce(s, Next()) is s


def test_branch_only_changes_at_pivot():
    s = _at(S.PROJECT_DETAILS, branch_choice=BranchChoice.YES)
    assert reduce(s, SetBranch(payload=BranchChoice.NO)) is s


def test_set_branch_rejects_unset():
    with pytest.raises(ValueError):
        SetBranch(payload=BranchChoice.UNSET)


def test_yes_branch_walks_to_success():
    s = reduce(_at(S.PIVOT_QUESTION), SetBranch(payload=BranchChoice.YES))
    seen = []
    while s.current_step is not S.SUCCESS:
        s = reduce(s, Next())
        seen.append(s.current_step)
    assert seen == [
        S.SCANNER_UPLOAD,
        S.ANALYSIS_THEATER,
        S.RESULT_DISPLAY,
        S.VAULT_CONFIRMATION,
        S.PROJECT_DETAILS,
        S.FINAL_ESCALATION,
        S.SUCCESS,
    ]
    assert s.event_id == "wm_test_00000001"


def test_exit_intercept_returns_to_interrupted_step():
    s = reduce(_at(S.PROJECT_DETAILS), ShowExitIntercept())
    assert s.current_step is S.EXIT_INTERCEPT
    assert s.is_exit_intercept_active
    assert s.exit_from_step is S.PROJECT_DETAILS

    # NEXT is not an exit intercept transition
    assert reduce(s, Next()) is s

    s = reduce(s, ResumeFromExit())
    assert s.current_step is S.PROJECT_DETAILS
    assert s.exit_from_step is None
    assert not s.is_exit_intercept_active


@pytest.mark.parametrize("step", [S.LEAD_CAPTURE, S.SUCCESS])
def test_exit_intent_ignored_outside_funnel_body(step):
    s = _at(step)
    assert reduce(s, ShowExitIntercept()) is s


def test_resume_from_exit_ignored_when_not_intercepted():
    s = _at(S.RESULT_DISPLAY)
    assert reduce(s, ResumeFromExit()) is s


def test_success_only_leaves_on_reset():
    s = _at(S.SUCCESS)
    assert DEFAULT_TABLE.events(S.SUCCESS) == {FunnelEvent.RESET}
    assert reduce(s, Next()) is s

    fresh = reduce(s, Reset(event_id="wm_new_11111111"))
    assert fresh.current_step is S.LEAD_CAPTURE
    assert fresh.lead_id is None
    assert fresh.event_id == "wm_new_11111111"


def test_reset_clears_everything_and_mints_event_id():
    s = _at(S.SCANNER_UPLOAD, branch_choice=BranchChoice.YES)
    s = reduce(s, SetPivotForm(payload=PivotFormData(has_estimate=False)))
    fresh = reduce(s, Reset())

    assert fresh.current_step is S.LEAD_CAPTURE
    assert fresh.branch_choice is BranchChoice.UNSET
    assert fresh.form_values.pivot is None
    assert fresh.event_id.startswith("wm_")
    assert fresh.event_id != s.event_id


def test_lead_id_set_once():
    s = reduce(_state(), SetLeadId(payload="5"))
    assert reduce(s, SetLeadId(payload="6")) is s
    assert s.lead_id == "5"


def test_forms_land_in_their_slots():
    s = _at(S.PROJECT_DETAILS)
    s = reduce(s, SetProjectDetails(payload=ProjectDetailsFormData(window_count=12, timeline="30_days")))
    s = reduce(s, SetEscalation(payload=EscalationFormData(callback_preference="asap")))
    assert s.form_values.project_details.window_count == 12
    assert s.form_values.escalation.callback_preference == "asap"

    # revisiting a step overwrites its answers
    s = reduce(s, SetProjectDetails(payload=ProjectDetailsFormData(window_count=3)))
    assert s.form_values.project_details.window_count == 3
    assert s.form_values.project_details.timeline is None


def test_unknown_action_is_ignored():
    s = _state()
    assert reduce(s, object()) is s


# ---------- transition table ----------
def _rows(**changes):
    rows = {step: dict(row) for step, row in DEFAULT_TRANSITIONS.items()}
    for step, row in changes.items():
        if row is None:
            rows.pop(S(step))
        else:
            rows[S(step)] = row
    return rows


def test_default_table_is_valid():
    TransitionTable(DEFAULT_TRANSITIONS)


@pytest.mark.parametrize("changes", [
    {"project_details": None},
    {"success": {FunnelEvent.RESET: S.LEAD_CAPTURE, FunnelEvent.NEXT: S.LEAD_CAPTURE}},
    {"scanner_upload": {FunnelEvent.NEXT: S.ANALYSIS_THEATER, FunnelEvent.EXIT_INTENT: S.EXIT_INTERCEPT}},
    {"pivot_question": {
        FunnelEvent.NEXT: {BranchChoice.YES: S.SCANNER_UPLOAD},
        FunnelEvent.EXIT_INTENT: S.EXIT_INTERCEPT,
        FunnelEvent.RESET: S.LEAD_CAPTURE,
    }},
    {"lead_capture": {
        FunnelEvent.NEXT: S.PIVOT_QUESTION,
        FunnelEvent.EXIT_INTENT: S.EXIT_INTERCEPT,
        FunnelEvent.RESET: S.LEAD_CAPTURE,
    }},
    {"result_display": {
        FunnelEvent.NEXT: S.PROJECT_DETAILS,
        FunnelEvent.EXIT_INTENT: S.EXIT_INTERCEPT,
        FunnelEvent.RESET: S.LEAD_CAPTURE,
    }},
    {"final_escalation": {
        FunnelEvent.NEXT: "somewhere",
        FunnelEvent.EXIT_INTENT: S.EXIT_INTERCEPT,
        FunnelEvent.RESET: S.LEAD_CAPTURE,
    }},
])
def test_malformed_tables_are_rejected(changes):
    with pytest.raises(TransitionTableError):
        TransitionTable(_rows(**changes))


# ---------- funnel + store ----------
@pytest.fixture
def store(storage, make_validator, clock):
    s = SessionStore(storage, make_validator(), clock=clock)
    s.load()
    return s


def test_dispatch_mirrors_durable_fields(store, storage):
    funnel = VaultFunnel(store)
    funnel.dispatch(SetLeadId(payload="77"))
    funnel.dispatch(Next())
    funnel.dispatch(SetBranch(payload=BranchChoice.NO))
    funnel.dispatch(SetPivotForm(payload=PivotFormData(has_estimate=False, phone="5550001111")))

    saved = SessionRecord.from_json(storage.get(store.key))
    assert saved.lead_id == "77"
    assert saved.current_step is S.PIVOT_QUESTION
    assert saved.branch_choice is BranchChoice.NO
    assert saved.form_values.pivot.phone == "5550001111"
    assert saved.event_id == funnel.state.event_id

    funnel.dispatch(Next())
    assert SessionRecord.from_json(storage.get(store.key)).current_step is S.FINAL_ESCALATION


def test_exit_intercept_survives_reload(store, storage, make_validator, clock):
    funnel = VaultFunnel(store)
    funnel.dispatch(SetLeadId(payload="3"))
    funnel.dispatch(Next())
    funnel.dispatch(ShowExitIntercept())

    again = SessionStore(storage, make_validator(existing=["3"]), clock=clock)
    again.load()
    reopened = VaultFunnel(again)
    assert reopened.state.current_step is S.EXIT_INTERCEPT
    assert reopened.state.exit_from_step is S.PIVOT_QUESTION

    reopened.dispatch(ResumeFromExit())
    assert reopened.state.current_step is S.PIVOT_QUESTION


def test_no_op_does_not_write(store, storage):
    funnel = VaultFunnel(store)
    before = storage.get(store.key)
    funnel.dispatch(Next())
    assert storage.get(store.key) == before


def test_reset_through_funnel_replaces_session(store, storage):
    funnel = VaultFunnel(store)
    funnel.dispatch(SetLeadId(payload="9"))
    old_event = funnel.state.event_id

    state = funnel.dispatch(Reset())

    assert state.event_id != old_event
    assert state.lead_id is None
    saved = SessionRecord.from_json(storage.get(store.key))
    assert saved.event_id == state.event_id
    assert saved.lead_id is None


def test_failed_save_keeps_previous_state(store, monkeypatch):
    funnel = VaultFunnel(store)

    def boom(update):
        raise OSError("storage unavailable")

    monkeypatch.setattr(store, "save", boom)
    with pytest.raises(OSError):
        funnel.dispatch(SetLeadId(payload="4"))
    assert funnel.state.lead_id is None


def test_funnel_resume_lands_on_pivot(storage, make_validator, clock):
    first = SessionStore(storage, make_validator(), clock=clock)
    first.load()
    funnel = VaultFunnel(first)
    funnel.dispatch(SetLeadId(payload="21"))
    funnel.dispatch(Next())
    funnel.dispatch(SetBranch(payload=BranchChoice.YES))
    funnel.dispatch(Next())
    assert funnel.state.current_step is S.SCANNER_UPLOAD

    returning = SessionStore(storage, make_validator(existing=["21"]), clock=clock)
    returning.load()
    resumed = VaultFunnel(returning)
    assert resumed.can_resume

    state = resumed.resume()
    assert state.current_step is S.PIVOT_QUESTION
    assert state.lead_id == "21"
    assert not resumed.can_resume


# ---------- browser-facing actions ----------
CLIENT = TypeAdapter(ClientAction)
SERVER = TypeAdapter(VaultAction)


def test_clients_cannot_set_the_lead_id():
    assert isinstance(SERVER.validate_python({"type": "SET_LEAD_ID", "payload": "1"}), SetLeadId)
    with pytest.raises(ValidationError):
        CLIENT.validate_python({"type": "SET_LEAD_ID", "payload": "1"})


def test_client_reset_cannot_choose_event_id():
    with pytest.raises(ValidationError):
        CLIENT.validate_python({"type": "RESET", "eventId": "wm_test_00000001"})

    action = CLIENT.validate_python({"type": "RESET"})
    assert isinstance(action, ClientReset)
    fresh = reduce(_at(S.PROJECT_DETAILS), action.to_action())
    assert fresh.current_step is S.LEAD_CAPTURE
    assert fresh.event_id != "wm_test_00000001"
