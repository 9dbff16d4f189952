"""
ScanRelay Backend - Application Package
=======================================

What: Document-scan relay. An API-key holder files a scan request, a paired
      phone claims it, uploads a PDF with OCR text, and the issuer collects
      the result or receives a webhook.
Who:  Imported by uvicorn (scanrelay.main:app), Alembic, pytest and the seed CLI.

Layering:

    ┌─────────────────────────────────────┐
    │        Routes + deps (API)          │  ← HTTP, auth headers, DI wiring
    ├─────────────────────────────────────┤
    │        Services (coordination)      │  ← lifecycle, pairing, delivery, sweeper
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │     Database + Storage providers    │  ← async sessions, blob handles
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
