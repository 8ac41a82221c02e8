"""listingflow - job workflow engine for brokerage media production.

Tracks listing photo-editing jobs from draft through review, processing,
delivery and completion, with role-based access, tenant scoping and an
append-only audit trail for every state change.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
