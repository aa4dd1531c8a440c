# ============================================================================
# foundry/base/__init__.py
# Foundational settings shared by every other subpackage
# ============================================================================
#
# - config.py: FoundryConfig sections, get_config()/set_config(), setup_logging()
#
# ============================================================================
