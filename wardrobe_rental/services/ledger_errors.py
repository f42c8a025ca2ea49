from __future__ import annotations


class LedgerError(RuntimeError):
    status_code = 500

    def __init__(self, message: str, *, conflicts: list[dict] | None = None):
        super().__init__(message)
        self.message = message
        self.conflicts = list(conflicts or [])

    def to_detail(self) -> dict:
        detail: dict = {"message": self.message}
        if self.conflicts:
            detail["conflicts"] = self.conflicts
        return detail


class ValidationError(LedgerError):
    status_code = 400


class NotFoundError(LedgerError):
    status_code = 404


class ConflictError(LedgerError):
    status_code = 409


class InternalError(LedgerError):
    status_code = 500
