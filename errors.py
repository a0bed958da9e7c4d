# backend/errors.py
"""
Error taxonomy shared by the logic layer and the HTTP handlers.

Every error carries the HTTP status it maps to and a message that is safe
to show to the learner.
"""


class HabitatError(Exception):
    status_code = 500
    message = "Internal server error"

    def __init__(self, message=None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class ValidationError(HabitatError):
    status_code = 400
    message = "Invalid parameters"


class UnauthorizedError(HabitatError):
    status_code = 401
    message = "Authentication required"


class ForbiddenError(HabitatError):
    status_code = 403
    message = "Admin access required"


class NotFoundError(HabitatError):
    status_code = 404
    message = "Not found"


class AlreadyUsedError(HabitatError):
    status_code = 409
    message = "Code has already been used"


class ExpiredError(HabitatError):
    status_code = 410
    message = "Code has expired"


class UpstreamError(HabitatError):
    """A payment, identity or storage provider failed."""

    status_code = 502
    message = "Upstream service failure"


class ConflictError(HabitatError):
    status_code = 409
    message = "Progress changed while saving, please retry"
