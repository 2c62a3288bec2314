"""
channels — Outbound message transports.

Each transport exposes:
    async send(to, body) → provider message id   (raises SmsDeliveryError)

Transports are stateless per message. Isolation and logging live in fanout.
"""
