"""
tracegate.db.repositories

Repository package.

Responsibilities:
- Group data-access repositories for audit entries and security events.
"""

# Package marker; repositories are imported directly from submodules.
