"""
notifications — Leave status notification delivery.

Sub-modules:
    channels/   — Outbound adapters (native client, hosted API, recording)
    router      — Priority-ordered fallback dispatch with readiness tracking
    templates   — Pure message rendering
    inbox       — In-app notification store
    service     — Application seam: inbox + push + outbound per leave event
    models      — Data structures shared across the package
"""
