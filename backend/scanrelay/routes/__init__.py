# Routes package init
"""
ScanRelay Backend - API Routes Package
======================================

Route Inventory:
    - health.py:      GET  /health
    - keys.py:        /api/v1/keys                    (API key)
    - devices.py:     /api/v1/devices                 (API key; pair-with-* open)
    - requests.py:    /api/v1/requests                (API key, issuer side)
    - results.py:     /api/v1/requests/{id}/result|pdf|text
    - device_api.py:  /api/v1/device/requests         (API key + X-Device-Id)
    - dashboard.py:   /api/v1/dashboard               (dashboard session JWT)
    - deps.py:        auth dependencies and service factories

Routes stay thin: parse the HTTP request, call a service, shape the
response. State transitions and ownership checks live in services/.
"""
