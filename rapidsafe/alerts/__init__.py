"""
alerts — Backend alert records and contact notification.

Sub-modules:
    channels/       — Outbound SMS transports (simulation, Twilio)
    alert_service   — Create / update / resolve alert records
    fanout          — Concurrent per-contact SMS with failure isolation
    store           — Alert record persistence
    models          — Data structures shared across the system
"""
