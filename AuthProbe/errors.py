class AuthProbeError(Exception):
    """Base class for every error raised by AuthProbe."""


class ConfigurationError(AuthProbeError):
    pass


class SessionStoreUnavailable(AuthProbeError):
    pass


# Identity provider client errors. These never leave the flow controller
# without being translated into an AuthError.
class ProviderError(AuthProbeError):
    pass


class TokenExchangeError(ProviderError):
    pass


class UserInfoError(ProviderError):
    pass


class DiscoveryError(ProviderError):
    pass


# Login flow errors. All of them are recoverable from the browser's point of
# view: show the error page and let the user start over at /auth/login.
class AuthError(AuthProbeError):
    pass


class StateMismatch(AuthError):
    pass


class AuthorizationRequestExpired(StateMismatch):
    pass


class AuthorizationDenied(AuthError):
    pass


class TokenExchangeFailed(AuthError):
    pass


class UserInfoFetchFailed(AuthError):
    pass


class InvalidPrincipal(AuthError):
    pass


class SessionNotFound(AuthError):
    pass
