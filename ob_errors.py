# Purpose: Error taxonomy shared by the security gate and the lifecycle engine.
# Not for production use; intended only as a reference sandbox.

class ApiError(Exception):
    """Base error with a stable code, a human title and the HTTP status the routes use."""

    code = "INTERNAL_ERROR"
    title = "Internal error"
    detail = "An unexpected error occurred"
    http_status = 500

    def __init__(self, detail=None):
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)

    def as_error(self):
        return {"code": self.code, "title": self.title, "detail": self.detail}

    def __str__(self):
        return f"{self.code}: {self.detail}"


class Unauthorized(ApiError):
    code = "UNAUTHORIZED"
    title = "Unauthorised"
    detail = "The authorisation token was not sent or is invalid"
    http_status = 401


class BadRequest(ApiError):
    code = "MISSING_MANDATORY_HEADERS"
    title = "Missing mandatory headers"
    detail = "A mandatory header was not sent"
    http_status = 400


class InvalidBody(BadRequest):
    code = "PARAMETRO_INVALIDO"
    title = "Invalid parameter"
    detail = "The request body does not match the expected schema"


class BadSignature(ApiError):
    code = "BAD_SIGNATURE"
    title = "Bad signature"
    detail = "Could not verify the message signature"
    http_status = 400


class NotFound(ApiError):
    code = "NOT_FOUND"
    title = "Not found"
    detail = "The requested resource does not exist"
    http_status = 404


class UpstreamUnavailable(ApiError):
    """An introspection, client registry or key-set call failed or returned malformed data."""

    code = "UPSTREAM_UNAVAILABLE"
    title = "Upstream unavailable"
    detail = "A dependency of the security gate could not be reached"
    http_status = 502


class SigningFailure(ApiError):
    code = "INTERNAL_ERROR"
    title = "Internal error"
    detail = "The response could not be signed"
    http_status = 500


class ConfigurationError(ValueError):
    pass
