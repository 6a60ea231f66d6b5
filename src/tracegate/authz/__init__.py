"""
tracegate.authz

Authorization package.

Responsibilities:
- Capability matrix (roles x resources x permissions) and its loader.
- The stateless `Authorizer`.
"""

# Package marker.
