"""
tracegate.audit

Audit trail and security-event records.

Responsibilities:
- Define immutable audit/event records, the sink interface and the audit logger.
"""

# Package marker; import from submodules.
