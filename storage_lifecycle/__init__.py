"""
Storage Lifecycle Engine

Provider-agnostic object storage for photo assets with policy-driven
lifecycle management (keep, archive, delete), safeguards and audit trail.
"""

__version__ = "1.0.0"
