# Middleware package init
"""
ScanRelay Backend - Middleware Package
======================================

Middleware chain (outermost first):
    Request → [Rate Limit] → [Request ID] → [Logging] → [CORS] → Route Handler

    Rate limiting rejects before anything else runs. The request ID is set
    before the access log line is written so both carry the same ID.
"""
