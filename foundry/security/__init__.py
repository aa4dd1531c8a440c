# ============================================================================
# foundry/security/__init__.py
# Request signing, authentication, throttling and capability checks
# ============================================================================
#
# - signing.py:       canonical query/base string, HMAC, shared secret lifecycle
# - authenticator.py: header verification, clock skew, nonce replay defence
# - rate_limit.py:    fixed-window per-client throttle
# - capability.py:    operator directory and administrative capability check
#
# ============================================================================
