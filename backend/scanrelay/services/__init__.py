# Services package init
"""
ScanRelay Backend - Services Layer
==================================

What:  The coordination core: lifecycle, pairing, delivery and retention.
How:   Services take a session plus their collaborators (storage, webhook
       dispatcher, push notifier, BackgroundTasks) as constructor arguments.
       Routes build them per request in routes/deps.py; nothing here reaches
       for module-level singletons.

Service Inventory:
    - CredentialService:  API-key auth, device authorization, key management
    - DeviceService:      direct pairing, listing, unpairing
    - RequestService:     scan-request state machine
    - PairingService:     pairing token / short code issue and redemption
    - DeliveryService:    result storage, retrieval, webhook hand-off
    - DashboardService:   per-user stats, keys, devices and request history
    - RetentionSweeper:   periodic expiry and result purge
    - StorageProvider:    blob storage interface (LocalStorageProvider)
    - PushNotifier:       push interface (LoggingPushNotifier)
"""
