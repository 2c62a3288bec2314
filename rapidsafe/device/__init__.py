"""
On-device side of RapidSafe: PIN gate, credentials, alert dispatch,
location streaming and the local history log.
"""
