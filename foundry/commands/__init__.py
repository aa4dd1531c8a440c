# ============================================================================
# foundry/commands/__init__.py
# Command validation, dispatch and built-in operations
# ============================================================================
#
# - validator.py:  metacharacter/length/allow-list checks, shorthand normalisation
# - dispatcher.py: CommandEnvelope parsing, routing to WP-CLI or built-ins
# - builtins.py:   the `foundry` namespace (versions, listing, backups, installs)
# - files.py:      bounded-depth file inventory with glob filters
# - updater.py:    helper self-update check/apply
#
# ============================================================================
