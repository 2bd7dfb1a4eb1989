class StorefrontError(Exception):
    """Base class for failures the storefront surfaces to the UI."""


class SignInRequired(StorefrontError):
    """Raised when an action needs a signed-in customer."""


class AuthenticationRequired(StorefrontError):
    """Raised when an action needs a bearer token, not just a user id."""


class ApiError(StorefrontError):
    def __init__(self, message: str, status=None):
        super().__init__(message)
        self.status = status
