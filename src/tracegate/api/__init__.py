"""
tracegate.api

API package for the tracegate security gateway.

Responsibilities:
- FastAPI app factory, the ASGI security middleware and the route policy table.
- Review endpoints for security monitoring and the audit trail.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# The API layer stays thin: routing and wiring here, decisions in `tracegate.pipeline`.
