"""
tracegate.observability

Logging plumbing: structlog configuration, credential scrubbing and request-id binding.
"""

# Package marker.
