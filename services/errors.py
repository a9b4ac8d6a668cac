"""Domain errors raised by the mutaba'ah services.

All errors derive from ValueError so callers that only care about
"the request was refused" can keep catching ValueError, the same way the
workflow engine signals refused decisions.
"""


class MutabaahError(ValueError):
    code = "error"
    http_status = 400
    retryable = False

    def __init__(self, message="", **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self):
        data = {"error": self.code, "message": self.message}
        if self.context:
            data["context"] = self.context
        return data


# =========================
# Validation
# =========================
class ValidationError(MutabaahError):
    code = "validation_error"


class DuplicateDateError(ValidationError):
    code = "duplicate_date"


class UnsavedChangesError(ValidationError):
    code = "save_first"


class CatalogError(ValidationError):
    code = "catalog_error"


# =========================
# Timing / window
# =========================
class SubmissionWindowError(MutabaahError):
    code = "window_not_open"
    http_status = 409


class MonthLockedError(MutabaahError):
    code = "month_locked"
    http_status = 409


class MonthNotActivatedError(MutabaahError):
    code = "month_not_activated"
    http_status = 409


# =========================
# Workflow
# =========================
class IllegalTransitionError(MutabaahError):
    code = "illegal_transition"
    http_status = 409


class ReviewerMismatchError(MutabaahError):
    code = "reviewer_mismatch"
    http_status = 403


class NotFoundError(MutabaahError):
    code = "not_found"
    http_status = 404


# =========================
# Transient store errors
# =========================
class StoreTimeoutError(MutabaahError):
    code = "timeout"
    http_status = 503
    retryable = True


class ConcurrentUpdateError(MutabaahError):
    code = "concurrent_update"
    http_status = 503
    retryable = True
