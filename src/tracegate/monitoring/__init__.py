"""
tracegate.monitoring

Security monitoring (anomaly scores, dashboard metrics).
"""

# Package marker.
