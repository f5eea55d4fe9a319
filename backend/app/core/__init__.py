"""
Core package — ambient concerns shared by the notification service.

Modules:
    config          — Settings (channel credentials, timeouts, institution)
    errors          — LeaveNotifyError hierarchy & JSON error envelope
    logging_config  — JSON / pretty formatters, request-scoped context
    middleware      — correlation IDs & access lines
    health          — readiness-based health aggregation
"""
