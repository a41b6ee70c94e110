# vaultgate/services/lead_validator.py
import logging
from typing import Any, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from vaultgate.core.config import (
    LEAD_LOOKUP_URL,
    LEAD_LOOKUP_CONNECT_TIMEOUT,
    LEAD_LOOKUP_READ_TIMEOUT,
    LEAD_LOOKUP_RETRIES,
    LEAD_LOOKUP_BACKOFF,
)

logger = logging.getLogger("vaultgate.lead_validator")

_RETRY = Retry(
    total=LEAD_LOOKUP_RETRIES,
    connect=LEAD_LOOKUP_RETRIES,
    read=LEAD_LOOKUP_RETRIES,
    backoff_factor=LEAD_LOOKUP_BACKOFF,
    status_forcelist=(429, 502, 503, 504),
    allowed_methods=("GET",),
    raise_on_status=False,
)


def _build_session() -> requests.Session:
    s = requests.Session()
    adapter = HTTPAdapter(max_retries=_RETRY)
    s.mount("https://", adapter)
    s.mount("http://", adapter)
    return s


def parse_lead_id(lead_id: Any) -> Optional[int]:
    """Numeric id the lead service understands, or None."""
    text = str(lead_id).strip() if lead_id is not None else ""
    # isdigit() admits characters like "²" that int() rejects
    if not (text.isascii() and text.isdecimal()):
        return None
    n = int(text)
    return n if n > 0 else None


def _is_absent(payload: Any) -> bool:
    # bare null, {"lead": null} or a tRPC-style {"result": {"data": null}}
    if payload is None:
        return True
    if isinstance(payload, dict):
        if "lead" in payload:
            return payload["lead"] is None
        result = payload.get("result")
        if isinstance(result, dict) and "data" in result:
            return result["data"] is None
    return False


class LeadExistenceValidator:
    """
    Asks the lead service whether a lead still exists.

    Malformed ids fail closed (False). Transport and service failures fail
    open (True): a visitor's real progress is not thrown away because the
    check itself could not run. Never raises.
    """

    def __init__(self, lookup_url: str = LEAD_LOOKUP_URL, session: Optional[requests.Session] = None):
        self.lookup_url = lookup_url
        self._session = session

    def _get_session(self) -> requests.Session:
        if self._session is None:
            self._session = _build_session()
        return self._session

    def exists(self, lead_id: Any) -> bool:
        numeric_id = parse_lead_id(lead_id)
        if numeric_id is None:
            logger.warning("lead check: malformed lead_id=%r, treating as absent", lead_id)
            return False

        url = self.lookup_url.format(lead_id=numeric_id)
        try:
            resp = self._get_session().get(
                url,
                headers={"Accept": "application/json"},
                timeout=(LEAD_LOOKUP_CONNECT_TIMEOUT, LEAD_LOOKUP_READ_TIMEOUT),
            )
        except requests.RequestException as e:
            logger.warning("lead check failed lead_id=%s, assuming it exists: %r", numeric_id, e)
            return True

        if resp.status_code == 404:
            logger.info("lead check lead_id=%s -> not found (404)", numeric_id)
            return False
        if resp.status_code >= 400:
            logger.warning(
                "lead check HTTP %s lead_id=%s, assuming it exists: %s",
                resp.status_code, numeric_id, resp.text[:300],
            )
            return True

        try:
            payload = resp.json()
        except ValueError:
            logger.warning("lead check lead_id=%s returned non-JSON, assuming it exists", numeric_id)
            return True

        found = not _is_absent(payload)
        logger.info("lead check lead_id=%s -> %s", numeric_id, "found" if found else "not found")
        return found
