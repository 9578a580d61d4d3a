# src/errors.py
"""
Typed dispatch failures.

They are terminal, non-retryable results for the caller: the operator
console or the scheduler decides whether to retry with other parameters
(next candidate, overrideSla, ...).
"""


class DispatchError(Exception):
    code = "DISPATCH_ERROR"
    http_status = 400

    def __init__(self, message: str = "", **context):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context = context

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, **self.context}


class NotFound(DispatchError):
    code = "NOT_FOUND"
    http_status = 404


class RiderOffline(DispatchError):
    code = "RIDER_OFFLINE"
    http_status = 409


class RiderFull(DispatchError):
    code = "RIDER_FULL"
    http_status = 409


class OrderAlreadyAssigned(DispatchError):
    code = "ORDER_ALREADY_ASSIGNED"
    http_status = 409


class SLABreached(DispatchError):
    code = "SLA_BREACHED"
    http_status = 409


class InvalidRuleConfig(DispatchError):
    code = "INVALID_RULE_CONFIG"
    http_status = 422


class InvalidTransition(DispatchError):
    code = "INVALID_TRANSITION"
    http_status = 409


class TickTimeout(DispatchError):
    code = "TICK_TIMEOUT"
    http_status = 504


# reason recorded for a single item whose commit hit a database error
# (e.g. SQLite busy timeout); the batch / tick carries on with the rest
STORE_ERROR = "STORE_ERROR"
