# ============================================================================
# foundry/engine/__init__.py
# Process execution and the stream event protocol
# ============================================================================
#
# - events.py:     StreamEventType / StreamEvent and SSE framing
# - sink.py:       write-then-flush transports (channel, callback)
# - emitter.py:    per-command event envelope (start ... terminal)
# - classifier.py: severity heuristics for plain output lines
# - runner.py:     WP-CLI subprocess spawn and line-by-line streaming
#
# ============================================================================
