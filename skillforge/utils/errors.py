# skillforge/utils/errors.py
"""Error taxonomy shared by the engines and rendered by the API envelope."""

# Numeric error codes exposed in metadata.errorCode
GENERIC_ERROR = 1000
INVALID_INPUT = 1006
MISSING_FIELDS = 1007
USER_NOT_FOUND = 1008
SKILL_NOT_FOUND = 1011
ASSESSMENT_NOT_FOUND = 1012
GENERATE_FAILED = 1014
PROGRESS_UPDATE_FAILED = 1015
LEVEL_OUT_OF_RANGE = 1017
ASSESSMENT_EXPIRED = 1018
CONFLICT = 1019


class SkillForgeError(Exception):
    status_code = 500
    error_code = GENERIC_ERROR

    def __init__(self, message: str, error_code: int | None = None):
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code


class ValidationError(SkillForgeError):
    """Malformed or out-of-range input. Raised before any side effect."""
    status_code = 400
    error_code = INVALID_INPUT


class NotFoundError(SkillForgeError):
    status_code = 404
    error_code = GENERIC_ERROR


class ExpiredError(SkillForgeError):
    status_code = 400
    error_code = ASSESSMENT_EXPIRED


class ConflictError(SkillForgeError):
    status_code = 409
    error_code = CONFLICT


class PersistenceError(SkillForgeError):
    """Opaque storage failure; the message is safe to show to clients."""
    status_code = 500
    error_code = GENERIC_ERROR
