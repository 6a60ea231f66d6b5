"""
tracegate.inspection

Input inspection package.

Responsibilities:
- `InputSanitizer`: normalize and strip dangerous markup from input values.
- `InjectionDetector`: SQL/script signature scanning.
"""

# Package marker.
