"""
Routers for the shipment ingest API.

Modules:
- ingest: document upload and status (POST /api/documents/ingest, GET /api/documents/*)
"""
from . import ingest

__all__ = ["ingest"]
