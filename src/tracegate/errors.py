"""
tracegate.errors

Exception hierarchy for unexpected faults.

Responsibilities:
- Name the faults that are *not* expected denials (those travel as `Decision` values).
- Give the pipeline boundary a single base type to catch and convert per stage policy.
"""

from __future__ import annotations


class TracegateError(Exception):
    pass


class ConfigurationError(TracegateError):
    """
    Raised at startup when settings or policy tables are inconsistent.
    """


class CapabilityMatrixError(ConfigurationError):
    pass


class StoreUnavailableError(TracegateError):
    """
    The counter/record store could not be reached or answered garbage.
    """


class ClientDisconnected(TracegateError):
    """
    The client went away while its body was being read; there is nobody to answer.
    """


class InternalAuditFault(TracegateError):
    """
    An audit or security-event record could not be written.

    Never surfaced to callers; the audit logger recovers locally and reports it on the
    fallback channel.
    """


# --- Module Notes -----------------------------------------------------------
# Denial kinds (payload too large, rate limited, forbidden, ...) live in
# `tracegate.pipeline.decision.DenyKind`, not here.
