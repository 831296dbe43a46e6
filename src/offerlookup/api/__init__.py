"""
FastAPI REST API for Offer Lookup

Provides REST endpoints for:
- File uploads (CSV/Excel) with background processing
- Upload job status, cancellation and live progress events
- Property search and details
- Upload statistics
- Health checks
"""
