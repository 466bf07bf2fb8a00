"""
Core functionality for the shipment ingestion processor.

This package contains:
- Configuration (config.py)
- Database models (database.py)
- Document storage and lifecycle (document_manager.py)
- Error taxonomy (errors.py)
- Logging (logger.py)
"""
