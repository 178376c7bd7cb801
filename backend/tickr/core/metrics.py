"""Prometheus counters for the auth subsystem; exported through the /metrics mount."""

from prometheus_client import Counter

TOKEN_REJECTIONS = Counter(
    "tickr_token_rejections_total",
    "Bearer tokens rejected by the authentication gate",
    ["reason"],  # invalid | revoked
)

JWKS_REFRESHES = Counter(
    "tickr_jwks_refresh_total",
    "JWKS cache refresh attempts",
    ["outcome"],  # fetched | stale | failed
)

LOGIN_ATTEMPTS = Counter(
    "tickr_login_attempts_total",
    "Login attempts by outcome",
    ["outcome"],  # success | invalid_credentials | locked
)

LOCKOUTS = Counter(
    "tickr_account_lockouts_total",
    "Identifiers moved to the locked state",
)
