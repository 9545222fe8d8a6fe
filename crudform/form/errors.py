from __future__ import annotations

from fastapi import HTTPException


class RecordNotFound(HTTPException):
    def __init__(self, detail: str = "Record not found"):
        super().__init__(status_code=404, detail=detail)


class PersistenceError(HTTPException):
    def __init__(self, detail: str = "Data constraint violation"):
        super().__init__(status_code=400, detail=detail)


class FormConfigurationError(ValueError):
    pass
