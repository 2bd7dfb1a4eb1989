from storefront.errors import (
    ApiError,
    AuthenticationRequired,
    SignInRequired,
    StorefrontError,
)
from storefront.sync import Storefront

__all__ = [
    "ApiError",
    "AuthenticationRequired",
    "SignInRequired",
    "Storefront",
    "StorefrontError",
]
