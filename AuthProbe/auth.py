import logging

import requests
from authlib.integrations.requests_client import OAuth2Session, OAuthError

from AuthProbe.config import ProviderConfig
from AuthProbe.errors import TokenExchangeError, UserInfoError

logger = logging.getLogger(__name__)


class ProviderClient(object):
    """The three OAuth2 Authorization Code operations against one identity provider.

    Holds no per-user state: every call builds a fresh OAuth2Session from the
    immutable ProviderConfig. Network calls are bounded by `config.timeout` and
    never retried; anything that is not a clear success raises.
    """

    def __init__(self, config: ProviderConfig):
        self._config = config

    def get_config(self):
        return self._config

    def get_oauth_session(self, token: dict = None, scope=None):
        # Create an OAuth2 session, optionally with a provided token
        return OAuth2Session(self._config.client_id, self._config.client_secret,
                             authorization_endpoint=self._config.authorization_endpoint,
                             token_endpoint=self._config.token_endpoint,
                             redirect_uri=self._config.redirect_uri,
                             token=token, scope=scope)

    def build_authorization_url(self, state: str, scopes) -> str:
        oauth_session = self.get_oauth_session(scope=' '.join(scopes))
        uri, _ = oauth_session.create_authorization_url(self._config.authorization_endpoint, state=state)
        return uri

    def exchange_code_for_token(self, code: str) -> str:
        """Trade an authorization code for an access token and return the access token."""
        oauth_session = self.get_oauth_session()
        try:
            token = oauth_session.fetch_token(self._config.token_endpoint,
                                              grant_type='authorization_code',
                                              code=code,
                                              timeout=self._config.timeout)
        except OAuthError as e:
            raise TokenExchangeError(f'Provider rejected the authorization code: {e.error}') from e
        except requests.Timeout as e:
            raise TokenExchangeError('Token endpoint timed out') from e
        except requests.RequestException as e:
            raise TokenExchangeError(f'Token request failed: {e}') from e
        except ValueError as e:
            # Body was not JSON
            raise TokenExchangeError('Token endpoint returned an unreadable response') from e
        finally:
            oauth_session.close()

        access_token = token.get('access_token') if token else None
        if not access_token:
            raise TokenExchangeError('Token response did not contain an access_token')
        logger.debug(f"Access token received (type={token.get('token_type', 'unknown')})")
        return access_token

    def fetch_user_info(self, access_token: str) -> dict:
        oauth_session = self.get_oauth_session(token={'access_token': access_token, 'token_type': 'Bearer'})
        try:
            response = oauth_session.get(self._config.userinfo_endpoint,
                                         headers={'Accept': 'application/json'},
                                         timeout=self._config.timeout)
        except requests.Timeout as e:
            raise UserInfoError('User info endpoint timed out') from e
        except (requests.RequestException, OAuthError) as e:
            raise UserInfoError(f'User info request failed: {e}') from e
        finally:
            oauth_session.close()

        if not 200 <= response.status_code < 300:
            raise UserInfoError(f'User info endpoint answered HTTP {response.status_code}')
        try:
            claims = response.json()
        except ValueError as e:
            raise UserInfoError('User info endpoint returned an unreadable response') from e
        if not isinstance(claims, dict):
            raise UserInfoError('User info response is not a JSON object')
        return claims
