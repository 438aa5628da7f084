# errors.py
"""
Error taxonomy shared by every core operation.

Core functions raise these; main.py maps them to HTTP responses of the
same shape FastAPI uses for HTTPException: {"detail": message}.
"""


class SkillSwapError(Exception):
    status_code = 500
    default_message = "Server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(SkillSwapError):
    status_code = 400
    default_message = "Invalid request"


class AuthenticationError(SkillSwapError):
    status_code = 401
    default_message = "Could not validate credentials"


class ForbiddenError(SkillSwapError):
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(SkillSwapError):
    status_code = 404
    default_message = "Not found"


class ConflictError(SkillSwapError):
    status_code = 409
    default_message = "Conflict"


class InvalidStateError(ConflictError):
    # meeting is not in the state the transition requires
    status_code = 400
    default_message = "Invalid state"


class ServerError(SkillSwapError):
    status_code = 500
    default_message = "Server error"
