"""
channels — Stubbed per-channel delivery backends.

Each channel module exposes:
    send(record, channel) → DeliveryAttempt

Backends never raise: provider failures come back as a FAILED attempt.
No retries here or anywhere in the engine; escalation is the only
second chance a message gets.
"""
