"""
alerts — Alert dispatch core.

Sub-modules:
    models             — Data structures and the lifecycle transition graph
    lifecycle          — Create / transition / delete alerts, emit intents
    matcher            — Nearest-available responder selection and claim
    geo_fence          — Trusted-location geofence evaluation
    trusted_locations  — Trusted-location management
    responders         — Responder availability management
    notifications      — Notifier boundary and fire-and-forget dispatch
"""
