"""
RapidSafe — duress-aware alert dispatch.

Sub-packages:
    core    — configuration, logging, errors, database, auth
    alerts  — backend alert records and SMS fanout
    api     — FastAPI routes
    device  — on-device PIN gate, dispatch client and location streamer
"""

__version__ = "1.0.0"
