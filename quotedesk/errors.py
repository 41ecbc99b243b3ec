from __future__ import annotations

from typing import Any, Dict, Iterable

from quotedesk.ui_strings import error_message


class AppError(Exception):
    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True

    def __init__(
        self,
        code: str | None = None,
        message_key: str | None = None,
        http_status: int | None = None,
        critical: bool | None = None,
        details: str | None = None,
        payload: Dict[str, Any] | None = None,
    ) -> None:
        self.code = (code or self.default_code).strip()
        self.message_key = (message_key or self.default_message_key).strip()
        self.http_status = int(http_status or self.default_http_status)
        self.critical = bool(self.default_critical if critical is None else critical)
        self.details = (details or "").strip() or None
        self.payload = dict(payload or {})
        super().__init__(self.details or self.code)

    def user_message(self) -> str:
        fallback = error_message("unexpected_error", "The operation could not be completed.")
        return error_message(self.message_key, fallback)

    def to_response_payload(self, request_id: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error": self.code,
            "message": self.user_message(),
            "request_id": request_id,
        }
        if self.payload:
            payload.update(self.payload)
        return payload


class UserActionError(AppError):
    default_code = "action_invalid"
    default_message_key = "validation_error"
    default_http_status = 400
    default_critical = False


class ValidationFailed(UserActionError):
    """Malformed edit or request payload, rejected before any store call."""

    default_code = "validation_error"
    default_message_key = "validation_error"
    default_http_status = 400
    default_critical = False

    def __init__(self, message_key: str | None = None, *, field: str | None = None, **kwargs) -> None:
        payload = dict(kwargs.pop("payload", None) or {})
        if field:
            payload.setdefault("field", field)
        super().__init__(message_key=message_key, payload=payload, **kwargs)
        self.field = field


class PermissionDenied(UserActionError):
    default_code = "permission_denied"
    default_message_key = "permission_denied"
    default_http_status = 403
    default_critical = False


class AuthRequired(PermissionDenied):
    default_code = "auth_required"
    default_message_key = "auth_required"
    default_http_status = 401


class NotFound(UserActionError):
    """Unknown quote or quote outside the actor's scope. Both look the same to callers."""

    default_code = "quote_not_found"
    default_message_key = "quote_not_found"
    default_http_status = 404
    default_critical = False

    def __init__(self, quote_id: str | None = None, **kwargs) -> None:
        payload = dict(kwargs.pop("payload", None) or {})
        if quote_id:
            payload.setdefault("quote_id", str(quote_id))
        super().__init__(payload=payload, **kwargs)
        self.quote_id = quote_id


class TransitionDenied(UserActionError):
    default_code = "action_not_allowed_for_status"
    default_message_key = "action_not_allowed_for_status"
    default_http_status = 409
    default_critical = False

    def __init__(
        self,
        *,
        action: str,
        status: str | None,
        actor_role: str | None,
        reason: str,
        allowed_actions: Iterable[str] = (),
        **kwargs,
    ) -> None:
        payload = dict(kwargs.pop("payload", None) or {})
        payload.update(
            {
                "action": action,
                "status": status,
                "actor_role": actor_role,
                "reason": reason,
                "allowed_actions": list(allowed_actions),
            }
        )
        super().__init__(details=reason, payload=payload, **kwargs)
        self.action = action
        self.status = status
        self.actor_role = actor_role
        self.reason = reason

    def user_message(self) -> str:
        return self.reason or super().user_message()


class StorageFailure(AppError):
    """Store-level failure. Never partially applied and always safe to retry."""

    default_code = "storage_unavailable"
    default_message_key = "storage_unavailable"
    default_http_status = 503
    default_critical = True

    retryable = True

    def __init__(self, details: str | None = None, **kwargs) -> None:
        payload = dict(kwargs.pop("payload", None) or {})
        payload.setdefault("retryable", True)
        super().__init__(details=details, payload=payload, **kwargs)


class SystemError(AppError):
    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True
