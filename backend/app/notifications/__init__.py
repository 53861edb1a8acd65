"""
notifications — Security-event notification channel decision engine.

Sub-modules:
    models                — Data structures shared across the engine
    channel_selector      — Pure routing cascade, trust decision, fallback rules
    event_store           — Telemetry records + ordered event / per-user indices
    escalation            — Deadline timers with a guarded fallback commit
    registry              — Device-trust registry and simulated context provider
    channels/             — Stubbed per-channel delivery backends
    notification_service  — Orchestration: dispatch, ack, login, binding, queries
"""
