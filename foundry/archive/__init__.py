# ============================================================================
# foundry/archive/__init__.py
# Zip staging and single-use artifact tokens
# ============================================================================
#
# - builder.py: rooted zip creation with exclusion patterns
# - tokens.py:  token records persisted through store + sidecar adapters
# - manager.py: create/resolve/consume downloads, stage/delete uploads
#
# ============================================================================
