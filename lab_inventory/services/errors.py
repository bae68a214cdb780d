from __future__ import annotations


class LabInventoryError(RuntimeError):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(LabInventoryError):
    status_code = 400


class ForbiddenError(LabInventoryError):
    status_code = 403


class NotFoundError(LabInventoryError):
    status_code = 404


class ConflictError(LabInventoryError):
    status_code = 409


class AlreadyReturnedError(ConflictError):
    pass


class AlreadyIssuedError(ConflictError):
    pass


class InternalError(LabInventoryError):
    status_code = 500
