import time
import logging

from AuthProbe.auth import ProviderClient
from AuthProbe.errors import (AuthError, AuthorizationDenied, AuthorizationRequestExpired, InvalidPrincipal,
                              SessionNotFound, SessionStoreUnavailable, StateMismatch, TokenExchangeError,
                              TokenExchangeFailed, UserInfoError, UserInfoFetchFailed)
from AuthProbe.models import AuthorizationRequestState, Principal, RedirectInstruction, SessionState
from AuthProbe.session import SessionHandler
from AuthProbe.utils import new_token, tokens_match

logger = logging.getLogger(__name__)

DEFAULT_SCOPES = ('openid', 'profile', 'email')
DEFAULT_LOGIN_TIMEOUT = 10 * 60


class AuthFlowController(object):
    """Per-session login state machine.

    anonymous -> pending -> authenticated, back to anonymous on logout, on a
    failed callback or when a pending login is left too long. Every operation
    takes the session id explicitly and only touches state through the
    injected SessionHandler.
    """

    def __init__(self, provider: ProviderClient, session_storage: SessionHandler, scopes=DEFAULT_SCOPES,
                 login_timeout: float = DEFAULT_LOGIN_TIMEOUT, log_enabled: bool = True):
        self._provider = provider
        self._session_storage = session_storage
        self._scopes = tuple(scopes)
        self._login_timeout = login_timeout
        self._log_enabled = log_enabled

    @property
    def session_storage(self):
        return self._session_storage

    def initiate_login(self, session_id, scopes=None) -> RedirectInstruction:
        scopes = tuple(scopes) if scopes else self._scopes
        auth_request = AuthorizationRequestState(state=new_token(), scopes=scopes, created_at=time.time())

        def begin(session):
            if session is None:
                raise SessionNotFound('Cannot start a login without a session')
            # Re-login from an authenticated session is allowed and replaces the principal later
            session.begin_login(auth_request)

        self._session_storage.update(session_id, begin)
        url = self._provider.build_authorization_url(auth_request.state, scopes)
        if self._log_enabled:
            logger.info(f'Starting authentication flow (scopes={" ".join(scopes)})')
        return RedirectInstruction(url=url, state=auth_request.state)

    def complete_login(self, session_id, params) -> Principal:
        """Finish a login from the provider's callback parameters.

        Returns the Principal on success. Any failure raises an AuthError and
        leaves the session anonymous; nothing is retried.
        """
        try:
            auth_request = self._consume_auth_request(session_id, params.get('state'))

            if params.get('error'):
                raise AuthorizationDenied(f"Provider returned error '{params.get('error')}': "
                                          f"{params.get('error_description', '')}")
            code = params.get('code')
            if not code:
                raise AuthorizationDenied('Callback did not include an authorization code')

            try:
                access_token = self._provider.exchange_code_for_token(code)
            except TokenExchangeError as e:
                raise TokenExchangeFailed(str(e)) from e

            try:
                claims = self._provider.fetch_user_info(access_token)
            except UserInfoError as e:
                raise UserInfoFetchFailed(str(e)) from e

            try:
                principal = Principal.from_claims(claims)
            except ValueError as e:
                raise InvalidPrincipal(str(e)) from e
        except AuthError as e:
            if self._log_enabled:
                logger.error(f'Authentication error: {type(e).__name__}: {e}')
            self._reset(session_id)
            raise

        def bind(session):
            if session is None:
                raise SessionNotFound('Session disappeared while the login was completing')
            session.authenticate(principal)

        self._session_storage.update(session_id, bind)
        if self._log_enabled:
            logger.info(f'User {principal.preferred_username or principal.subject} authenticated '
                        f'(scopes={" ".join(auth_request.scopes)})')
        return principal

    def _consume_auth_request(self, session_id, received_state) -> AuthorizationRequestState:
        # Check-and-clear under the store's per-key lock, so a replayed or
        # concurrent callback with the same state finds nothing to consume
        def consume(session):
            if session is None:
                return None
            return session.consume_auth_request()

        auth_request = self._session_storage.update(session_id, consume)
        if auth_request is None:
            raise StateMismatch('No login is pending for this session')
        if not tokens_match(auth_request.state, received_state):
            raise StateMismatch('Callback state does not match the pending login')
        if auth_request.is_expired(self._login_timeout):
            raise AuthorizationRequestExpired('Pending login is older than the login timeout')
        return auth_request

    def _reset(self, session_id):
        def reset(session):
            if session is not None:
                session.reset()

        try:
            self._session_storage.update(session_id, reset)
        except SessionStoreUnavailable as e:
            logger.error(f'Could not reset session after a failed login: {e}')

    def logout(self, session_id):
        """Forget the principal and the session record. Never fails."""
        try:
            session = self._session_storage.get(session_id)
            if session is not None and session.principal is not None and self._log_enabled:
                logger.info(f'User {session.principal.preferred_username or session.principal.subject} logged out')
            self._session_storage.destroy(session_id)
        except SessionStoreUnavailable as e:
            logger.error(f'Logout error: {e}')

    def is_authenticated(self, session_id) -> bool:
        session = self._session_storage.get(session_id)
        return session is not None and session.is_authenticated

    def get_principal(self, session_id):
        session = self._session_storage.get(session_id)
        if session is not None and session.is_authenticated:
            return session.principal
        return None

    def get_state(self, session_id) -> SessionState:
        session = self._session_storage.get(session_id)
        if session is None:
            return SessionState.ANONYMOUS
        if (session.status == SessionState.PENDING and session.auth_request is not None
                and session.auth_request.is_expired(self._login_timeout)):
            return SessionState.ANONYMOUS
        return session.status
