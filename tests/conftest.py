from urllib.parse import urlencode

import pytest

from AuthProbe import AuthFlowController, Config, SessionHandler
from AuthProbe.app import create_app
from AuthProbe.errors import TokenExchangeError, UserInfoError


class StubProvider:
    """Stands in for ProviderClient, records every call it gets."""

    def __init__(self, claims=None, token_error=None, userinfo_error=None):
        self.claims = claims if claims is not None else {'sub': 'u1', 'email': 'u1@example.com'}
        self.token_error = token_error
        self.userinfo_error = userinfo_error
        self.calls = []

    def build_authorization_url(self, state, scopes):
        self.calls.append(('authorize', state))
        query = urlencode({'response_type': 'code', 'client_id': 'client-id', 'state': state,
                           'scope': ' '.join(scopes)})
        return f'https://auth.example.com/application/o/authorize/?{query}'

    def exchange_code_for_token(self, code):
        self.calls.append(('token', code))
        if self.token_error:
            raise self.token_error
        return f'access-{code}'

    def fetch_user_info(self, access_token):
        self.calls.append(('userinfo', access_token))
        if self.userinfo_error:
            raise self.userinfo_error
        return self.claims


@pytest.fixture
def auth_config():
    return Config(authentik_url='https://auth.example.com',
                  client_id='client-id',
                  client_secret='client-secret',
                  cookie_secret_key='cookie-secret')


@pytest.fixture
def session_storage():
    return SessionHandler(mode='memory')


@pytest.fixture
def provider():
    return StubProvider()


@pytest.fixture
def controller(provider, session_storage):
    return AuthFlowController(provider, session_storage)


@pytest.fixture
def app(auth_config, session_storage, provider):
    app = create_app(auth_config, session_storage=session_storage, provider=provider)
    app.config['TESTING'] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def failing_token_provider():
    return StubProvider(token_error=TokenExchangeError('connection refused'))


@pytest.fixture
def failing_userinfo_provider():
    return StubProvider(userinfo_error=UserInfoError('HTTP 401'))
