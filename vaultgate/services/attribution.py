# vaultgate/services/attribution.py
from __future__ import annotations

import json
import logging
from typing import Dict, Mapping, Optional

from pydantic import ValidationError

from vaultgate.core.config import ATTRIBUTION_STORAGE_KEY, BROWSER_ID_COOKIE, CLICK_ID_COOKIE
from vaultgate.models.vault import AttributionRecord
from vaultgate.services.storage import KeyValueStorage

logger = logging.getLogger("vaultgate.attribution")

_QUERY_KEYS = (
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "fbclid",
    "gclid",
    "msclkid",
)
_COOKIE_KEYS = {"fbp": BROWSER_ID_COOKIE, "fbc": CLICK_ID_COOKIE}
_MAX_LEN = 255


def _clean(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    value = value.strip()[:_MAX_LEN]
    return value or None


def extract_attribution(
    query: Mapping[str, str],
    cookies: Mapping[str, str],
    *,
    referrer: Optional[str] = None,
    landing_page: Optional[str] = None,
) -> AttributionRecord:
    fields: Dict[str, Optional[str]] = {k: _clean(query.get(k)) for k in _QUERY_KEYS}
    for field, cookie in _COOKIE_KEYS.items():
        fields[field] = _clean(cookies.get(cookie))
    fields["referrer"] = _clean(referrer)
    fields["landing_page"] = _clean(landing_page)
    return AttributionRecord(**fields)


class AttributionCapture:
    """
    First-touch attribution for one browsing session.

    The first page view carrying any marketing identifier wins; later page views
    get the stored record back untouched. A page view without identifiers stores
    nothing so a later page that does carry them can still be captured.
    """

    def __init__(self, storage: KeyValueStorage, key: str = ATTRIBUTION_STORAGE_KEY):
        self.storage = storage
        self.key = key

    def stored(self) -> Optional[AttributionRecord]:
        raw = self.storage.get(self.key)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("attribution record is not an object")
            return AttributionRecord(**data)
        except (ValueError, ValidationError) as e:
            logger.warning("discarding corrupt attribution key=%s: %s", self.key, e)
            self.storage.remove(self.key)
            return None

    def capture(
        self,
        query: Mapping[str, str],
        cookies: Mapping[str, str],
        *,
        referrer: Optional[str] = None,
        landing_page: Optional[str] = None,
    ) -> AttributionRecord:
        existing = self.stored()
        if existing is not None:
            return existing

        fresh = extract_attribution(query, cookies, referrer=referrer, landing_page=landing_page)
        if fresh.has_identifiers():
            self.storage.set(self.key, fresh.model_dump_json(exclude_none=True))
            logger.info(
                "attribution captured source=%s medium=%s campaign=%s",
                fresh.utm_source, fresh.utm_medium, fresh.utm_campaign,
            )
        return fresh

    def current(self) -> AttributionRecord:
        """Stored record, or an empty one. Never captures."""
        return self.stored() or AttributionRecord()
