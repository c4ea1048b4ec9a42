import os
import json
from dataclasses import dataclass
from urllib.parse import urljoin

import requests

from AuthProbe.errors import ConfigurationError, DiscoveryError

# Authentik serves one OAuth2 provider per application under these paths
AUTHENTIK_AUTHORIZE_PATH = 'application/o/authorize/'
AUTHENTIK_TOKEN_PATH = 'application/o/token/'
AUTHENTIK_USERINFO_PATH = 'application/o/userinfo/'

SESSION_BACKENDS = ('memory', 'redis', 'shelve')
LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


def is_valid_url(url):
    if url is None:
        return False
    if url.find('http://') == 0 or url.find('https://') == 0:
        return True
    return False


def parse_scope(value):
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return [str(s).strip() for s in value if str(s).strip()]
    return [s for s in str(value).replace(',', ' ').split() if s]


def _optional_number(value, cast=float):
    if value is None or value == '':
        return None
    return cast(value)


def is_setting(name):
    # Settings are the attributes declared on Config with a None class default
    return not name.startswith('_') and name in vars(Config) and vars(Config)[name] is None


@dataclass(frozen=True)
class ProviderConfig:
    """Everything the identity provider client needs, fixed at startup."""
    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: str
    client_id: str
    client_secret: str
    redirect_uri: str
    timeout: float = 10.0

    def __repr__(self):
        return (f'ProviderConfig(authorization_endpoint={self.authorization_endpoint!r}, '
                f'client_id={self.client_id!r}, redirect_uri={self.redirect_uri!r})')


class Config(object):
    authentik_url = None
    well_known_openid_url = None
    authorization_endpoint = None
    token_endpoint = None
    userinfo_endpoint = None
    redirect_uri = None
    client_id = None
    client_secret = None
    cookie_secret_key = None
    scope = None
    host = None
    port = None
    session_ttl = None
    session_idle_timeout = None
    login_timeout = None
    provider_timeout = None
    session_backend = None
    redis_host = None
    redis_port = None
    redis_db = None
    redis_password = None
    shelve_filename = None
    log_level = None

    def __init__(self, config_path=None, from_env=False, **kwargs):
        # Defaults
        self.scope = ['openid', 'profile', 'email']
        self.host = '127.0.0.1'
        self.port = 3000
        self.session_ttl = 24 * 60 * 60
        self.login_timeout = 10 * 60
        self.provider_timeout = 10.0
        self.session_backend = 'memory'
        self.shelve_filename = 'session_data/sessions.db'
        self.log_level = 'INFO'

        if from_env:
            from decouple import AutoConfig
            self._load(AutoConfig(search_path=os.getcwd()))
        if config_path:
            if not os.path.exists(config_path):
                raise ConfigurationError(f'Configuration file not found: {config_path}')
            if config_path.endswith('.json'):
                self.load_from_json(config_path)
            else:
                self.load_from_env_file(config_path)
        for key, value in kwargs.items():
            if is_setting(key):
                setattr(self, key, value)
            else:
                raise ConfigurationError(f'Unknown configuration parameter: {key}')

        self.scope = parse_scope(self.scope)

    @classmethod
    def from_environment(cls, **kwargs):
        """Build a Config from process environment variables and the nearest .env file.

        The .env file is searched from the working directory upwards. Keyword
        arguments override whatever the environment provides.
        """
        return cls(from_env=True, **kwargs)

    def load_from_json(self, json_path):
        with open(json_path, 'r') as f:
            data = json.load(f)
        for key, value in data.items():
            if is_setting(key):
                setattr(self, key, value)

    def load_from_env_file(self, config_path):
        from decouple import Config as DecoupleConfig, RepositoryEnv
        self._load(DecoupleConfig(RepositoryEnv(config_path)))

    def _load(self, source):
        def read(name, attr, cast=None):
            value = source(name, default=None)
            if value is None or value == '':
                return
            try:
                setattr(self, attr, cast(value) if cast else value)
            except ValueError as e:
                raise ConfigurationError(f'Invalid value for {name}: {value!r}') from e

        read('AUTHENTIK_URL', 'authentik_url')
        read('WELL_KNOWN_OPENID_URL', 'well_known_openid_url')
        read('AUTHORIZATION_ENDPOINT', 'authorization_endpoint')
        read('TOKEN_ENDPOINT', 'token_endpoint')
        read('USERINFO_ENDPOINT', 'userinfo_endpoint')
        read('CLIENT_ID', 'client_id')
        read('CLIENT_SECRET', 'client_secret')
        read('CALLBACK_URL', 'redirect_uri')
        read('SESSION_SECRET', 'cookie_secret_key')
        read('SCOPE', 'scope', parse_scope)
        read('HOST', 'host')
        read('PORT', 'port', int)
        read('SESSION_TTL', 'session_ttl', int)
        read('SESSION_IDLE_TIMEOUT', 'session_idle_timeout', _optional_number)
        read('LOGIN_TIMEOUT', 'login_timeout', int)
        read('PROVIDER_TIMEOUT', 'provider_timeout', float)
        read('SESSION_BACKEND', 'session_backend', str.lower)
        read('REDIS_HOST', 'redis_host')
        read('REDIS_PORT', 'redis_port', int)
        read('REDIS_DB', 'redis_db', int)
        read('REDIS_PASSWORD', 'redis_password')
        read('SHELVE_FILENAME', 'shelve_filename')
        read('LOG_LEVEL', 'log_level', str.upper)

    def load_from_wellknown(self, wellknown_url: str = None):
        url = wellknown_url or self.well_known_openid_url
        try:
            response = requests.get(url, timeout=self.provider_timeout)
        except requests.RequestException as e:
            raise DiscoveryError(f'Error loading wellknown url {url}: {e}') from e
        if response.status_code != 200:
            raise DiscoveryError(f'Error loading wellknown url {url}: HTTP {response.status_code}')
        try:
            data = response.json()
        except ValueError as e:
            raise DiscoveryError(f'Invalid discovery document at {url}') from e
        # Explicit endpoints win over discovered ones
        self.authorization_endpoint = self.authorization_endpoint or data.get('authorization_endpoint')
        self.token_endpoint = self.token_endpoint or data.get('token_endpoint')
        self.userinfo_endpoint = self.userinfo_endpoint or data.get('userinfo_endpoint')

    def resolve_endpoints(self):
        if self.authentik_url:
            base = self.authentik_url.rstrip('/') + '/'
            self.authorization_endpoint = self.authorization_endpoint or urljoin(base, AUTHENTIK_AUTHORIZE_PATH)
            self.token_endpoint = self.token_endpoint or urljoin(base, AUTHENTIK_TOKEN_PATH)
            self.userinfo_endpoint = self.userinfo_endpoint or urljoin(base, AUTHENTIK_USERINFO_PATH)
        missing = not (self.authorization_endpoint and self.token_endpoint and self.userinfo_endpoint)
        if missing and self.well_known_openid_url:
            self.load_from_wellknown()
        if not self.redirect_uri:
            self.redirect_uri = f'http://localhost:{self.port}/auth/callback'

    def get_provider_domain(self):
        from AuthProbe.utils import get_domain_from_url
        return get_domain_from_url(self.authentik_url or self.authorization_endpoint or '')

    def dump_configuration(self, hide_password=True):
        config = dict(authentik_url=self.authentik_url,
                      well_known_openid_url=self.well_known_openid_url,
                      authorization_endpoint=self.authorization_endpoint,
                      token_endpoint=self.token_endpoint,
                      userinfo_endpoint=self.userinfo_endpoint,
                      redirect_uri=self.redirect_uri,
                      client_id=self.client_id,
                      client_secret=self.client_secret if not hide_password else '********',
                      cookie_secret_key=self.cookie_secret_key if not hide_password else '********',
                      scope=self.scope,
                      host=self.host,
                      port=self.port,
                      session_backend=self.session_backend,
                      session_ttl=self.session_ttl,
                      session_idle_timeout=self.session_idle_timeout)
        return json.dumps(config, indent=4)

    def __str__(self):
        return self.dump_configuration()

    def __repr__(self):
        return self.dump_configuration()

    def __getitem__(self, item):
        return getattr(self, item)

    def __contains__(self, item):
        return hasattr(self, item)

    def is_valid_config(self):
        problems = []
        for attr, name in (('authorization_endpoint', 'AUTHORIZATION_ENDPOINT'),
                           ('token_endpoint', 'TOKEN_ENDPOINT'),
                           ('userinfo_endpoint', 'USERINFO_ENDPOINT'),
                           ('redirect_uri', 'CALLBACK_URL')):
            if not is_valid_url(getattr(self, attr)):
                problems.append(f'{name} (or AUTHENTIK_URL) must be an http(s) URL')
        for attr, name in (('client_id', 'CLIENT_ID'),
                           ('client_secret', 'CLIENT_SECRET'),
                           ('cookie_secret_key', 'SESSION_SECRET')):
            if not getattr(self, attr):
                problems.append(f'{name} is required')
        if not self.scope:
            problems.append('SCOPE must name at least one scope')
        if self.session_backend not in SESSION_BACKENDS:
            problems.append(f'SESSION_BACKEND must be one of {", ".join(SESSION_BACKENDS)}')
        if not isinstance(self.port, int) or not 0 < self.port < 65536:
            problems.append('PORT must be a TCP port number')
        if not self.provider_timeout or self.provider_timeout <= 0:
            problems.append('PROVIDER_TIMEOUT must be positive')
        if self.log_level not in LOG_LEVELS:
            problems.append(f'LOG_LEVEL must be one of {", ".join(LOG_LEVELS)}')
        if problems:
            raise ConfigurationError(f"Missing configuration parameters. {'; '.join(problems)}")
        return True

    def validate(self):
        self.resolve_endpoints()
        return self.is_valid_config()

    def provider_config(self) -> ProviderConfig:
        self.validate()
        return ProviderConfig(authorization_endpoint=self.authorization_endpoint,
                              token_endpoint=self.token_endpoint,
                              userinfo_endpoint=self.userinfo_endpoint,
                              client_id=self.client_id,
                              client_secret=self.client_secret,
                              redirect_uri=self.redirect_uri,
                              timeout=float(self.provider_timeout))
