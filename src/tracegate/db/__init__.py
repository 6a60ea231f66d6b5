"""
tracegate.db

Persistence package (SQLAlchemy async) for the database record sink.

Responsibilities:
- Provide ORM models, engine/session setup, and append-only repositories.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Only audit entries and security events live here; platform data stays behind the gateway.
