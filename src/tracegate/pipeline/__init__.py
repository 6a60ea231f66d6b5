"""
tracegate.pipeline

The request security pipeline.

Responsibilities:
- Decision types, request context, route policy and the fixed stage sequence.
"""

# Package marker; import from submodules.
