# ============================================================================
# foundry/__init__.py
# WP Foundry helper: signed remote command channel for a WordPress host
# ============================================================================
#
# Subpackages, leaf-first:
# - base:     configuration and logging setup
# - store:    ephemeral keyed store with TTL (nonces, rate windows, tokens)
# - security: request signing, authentication, throttling, capabilities
# - commands: validation, dispatch and the `foundry` built-ins
# - engine:   subprocess execution and the stream event protocol
# - archive:  zip staging and single-use download/upload tokens
# - server:   FastAPI application and routers
#
# ============================================================================

__version__ = "2.2.0"

# Every HTTP route lives under this namespace
API_PREFIX = "/foundry/v1"
