import os

# Storage keys (one record each, namespaced)
SESSION_STORAGE_KEY = os.getenv("VAULT_SESSION_KEY", "wm_vault_session")
ATTRIBUTION_STORAGE_KEY = os.getenv("VAULT_ATTRIBUTION_KEY", "wm_attribution")

# Sessions older than this (by createdAt) are never resumed
SESSION_MAX_AGE_DAYS = int(os.getenv("VAULT_SESSION_MAX_AGE_DAYS", "7"))

# Cookies identifying the browsing context
VISITOR_COOKIE = os.getenv("VAULT_VISITOR_COOKIE", "wm_vid")
VISITOR_COOKIE_MAX_AGE = int(os.getenv("VAULT_VISITOR_COOKIE_MAX_AGE", str(365 * 24 * 3600)))
BROWSING_SESSION_COOKIE = os.getenv("VAULT_BROWSING_SESSION_COOKIE", "wm_session_id")
COOKIE_SECURE = os.getenv("VAULT_COOKIE_SECURE", "0") not in ("0", "false", "False")

# Attribution cookies set by the ad pixels
BROWSER_ID_COOKIE = "_fbp"
CLICK_ID_COOKIE = "_fbc"

# Remote lead-existence check; {lead_id} is substituted with the numeric id
LEAD_LOOKUP_URL = os.getenv("VAULT_LEAD_LOOKUP_URL", "http://127.0.0.1:8000/api/leads/{lead_id}")
LEAD_LOOKUP_CONNECT_TIMEOUT = float(os.getenv("VAULT_LEAD_LOOKUP_CONNECT_TIMEOUT", "3"))  # seconds
LEAD_LOOKUP_READ_TIMEOUT = float(os.getenv("VAULT_LEAD_LOOKUP_READ_TIMEOUT", "5"))  # seconds
LEAD_LOOKUP_RETRIES = int(os.getenv("VAULT_LEAD_LOOKUP_RETRIES", "2"))
LEAD_LOOKUP_BACKOFF = float(os.getenv("VAULT_LEAD_LOOKUP_BACKOFF", "0.3"))

# CORS
CORS_ORIGINS = [
    o.strip()
    for o in os.getenv("VAULT_CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
    if o.strip()
]

# In-memory funnels idle longer than this are dropped (the session record stays in storage)
CONTEXT_IDLE_TTL_SECONDS = int(os.getenv("VAULT_CONTEXT_IDLE_TTL_SECONDS", "1800"))
CONTEXT_SWEEP_INTERVAL_SECONDS = int(os.getenv("VAULT_CONTEXT_SWEEP_INTERVAL_SECONDS", "60"))
