"""
realtime — Server side of the dashboard push channel.

Modules:
    push_hub — per-user WebSocket registry and event fan-out
"""
