# errors.py
from typing import Optional


class ServiceError(Exception):
    status_code = 500

    def __init__(self, code: str, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class SessionNotFoundError(ServiceError):
    status_code = 404

    def __init__(self, session_id: str):
        super().__init__("session_not_found", "Session not found")
        self.session_id = session_id


class InternalError(ServiceError):
    def __init__(self, message: str):
        super().__init__("internal_error", message)
