# ============================================================================
# foundry/server/__init__.py
# Server Package - FastAPI Web Server
# ============================================================================
#
# - api.py:      application factory, exception handler, uvicorn entry point
# - routers/:    /run (SSE), /download, /upload, /health
#
# ============================================================================
