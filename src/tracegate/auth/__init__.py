"""
tracegate.auth

Authentication package.

Responsibilities:
- JWT helpers and validation.
- Credential extraction and API key / session lookups.
- The `Authenticator` stage component and FastAPI principal dependencies.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Authorization (capability matrix) is a separate package: `tracegate.authz`.
