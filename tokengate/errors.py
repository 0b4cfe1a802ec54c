class TokenGateError(Exception):
    status_code = 500

    def __init__(self, detail: str, payload: dict | None = None):
        super().__init__(detail)
        self.detail = detail
        self.payload = payload


class AuthorizationFailure(TokenGateError):
    status_code = 401


class ValidationFailure(TokenGateError):
    status_code = 400


class NotFound(TokenGateError):
    status_code = 404


class UpstreamFailure(TokenGateError):
    """The store or the challenge oracle failed or answered with an error."""
    status_code = 500


class InternalError(TokenGateError):
    status_code = 500
