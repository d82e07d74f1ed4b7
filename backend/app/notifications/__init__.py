"""
notifications — Emergency push notification fan-out.

Sub-modules:
    channels/   — Push delivery backends (FCM, simulated)
    notifier    — EmergencyNotifier: topic broadcast + nearby multicast
    geo_fence   — Nearby-citizen targeting (ring filter, token dedup)
    directory   — Read-only user directory (in-memory, Firestore)
    models      — Data structures shared across the package
"""
