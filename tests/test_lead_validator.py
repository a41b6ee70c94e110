import pytest
import requests

from vaultgate.services.lead_validator import LeadExistenceValidator, parse_lead_id

URL = "http://leads.test/api/leads/{lead_id}"


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else repr(payload)

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.urls = []

    def get(self, url, **kwargs):
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        return self.response


def _validator(**kw):
    session = FakeSession(**kw)
    return LeadExistenceValidator(URL, session=session), session


@pytest.mark.parametrize("raw, expected", [
    ("42", 42),
    (42, 42),
    (" 7 ", 7),
    ("0", None),
    ("-3", None),
    ("abc", None),
    ("", None),
    (None, None),
    ("12.5", None),
    ("²", None),
    ("٣", None),
])
def test_parse_lead_id(raw, expected):
    assert parse_lead_id(raw) == expected


@pytest.mark.parametrize("lead_id", ["abc", "", None, "0", "²"])
def test_malformed_id_is_absent_without_a_request(lead_id):
    validator, session = _validator(response=FakeResponse(payload={"id": 1}))
    assert validator.exists(lead_id) is False
    assert session.urls == []


def test_found_lead():
    validator, session = _validator(response=FakeResponse(payload={"id": 42, "email": "a@b.co"}))
    assert validator.exists("42") is True
    assert session.urls == ["http://leads.test/api/leads/42"]


@pytest.mark.parametrize("payload", [None, {"lead": None}, {"result": {"data": None}}])
def test_null_payloads_mean_absent(payload):
    validator, _ = _validator(response=FakeResponse(payload=payload))
    assert validator.exists(42) is False


@pytest.mark.parametrize("payload", [{"lead": {"id": 42}}, {"result": {"data": {"id": 42}}}])
def test_wrapped_payloads_mean_found(payload):
    validator, _ = _validator(response=FakeResponse(payload=payload))
    assert validator.exists(42) is True


def test_404_is_absent():
    validator, _ = _validator(response=FakeResponse(status_code=404, text="Not Found"))
    assert validator.exists("42") is False


@pytest.mark.parametrize("status", [500, 502, 503, 429, 401])
def test_service_errors_fail_open(status):
    validator, _ = _validator(response=FakeResponse(status_code=status, text="oops"))
    assert validator.exists("42") is True


@pytest.mark.parametrize("error", [
    requests.ConnectionError("refused"),
    requests.Timeout("slow"),
])
def test_transport_errors_fail_open(error):
    validator, _ = _validator(error=error)
    assert validator.exists("42") is True


def test_non_json_body_fails_open():
    validator, _ = _validator(response=FakeResponse(payload=ValueError("no json"), text="<html>"))
    assert validator.exists("42") is True


def test_store_never_resumes_a_malformed_lead_id(storage, clock):
    from vaultgate.models.vault import FunnelStep, SessionRecord
    from vaultgate.services.session_store import SessionStore

    storage.set("wm_vault_session", SessionRecord(
        event_id="wm_stored_abc12345",
        lead_id="²",
        current_step=FunnelStep.PROJECT_DETAILS,
        created_at=clock.now,
        updated_at=clock.now,
    ).to_json())
    validator, session = _validator(response=FakeResponse(payload={"id": 2}))
    store = SessionStore(storage, validator, clock=clock)

    rec = store.load()

    assert store.can_resume is False
    assert rec.lead_id is None
    assert rec.current_step is FunnelStep.LEAD_CAPTURE
    assert session.urls == []
