import sys
import logging
import argparse

from flask import Flask

from AuthProbe.auth import ProviderClient
from AuthProbe.config import Config
from AuthProbe.errors import ConfigurationError, ProviderError, SessionStoreUnavailable
from AuthProbe.flow import AuthFlowController
from AuthProbe.frameworks.flask import FlaskAuthProbe
from AuthProbe.session import SessionHandler

logger = logging.getLogger(__name__)


def build_session_storage(auth_config: Config) -> SessionHandler:
    kwargs = {}
    if auth_config.session_backend == 'redis':
        kwargs = dict(host=auth_config.redis_host, port=auth_config.redis_port, db=auth_config.redis_db,
                      password=auth_config.redis_password)
    elif auth_config.session_backend == 'shelve':
        kwargs = dict(filename=auth_config.shelve_filename)
    try:
        session_storage = SessionHandler(mode=auth_config.session_backend, ttl=auth_config.session_ttl,
                                         idle_timeout=auth_config.session_idle_timeout, **kwargs)
    except OSError as e:
        raise SessionStoreUnavailable(f'Cannot open session store: {e}') from e
    session_storage.ping()
    return session_storage


def create_app(auth_config: Config = None, session_storage: SessionHandler = None, provider: ProviderClient = None):
    """Flask application factory.

    Raises ConfigurationError or SessionStoreUnavailable when the app cannot
    work; nothing falls back to placeholder values.
    """
    if auth_config is None:
        auth_config = Config.from_environment()
    try:
        provider_config = auth_config.provider_config()
    except ProviderError as e:
        raise ConfigurationError(f'Cannot resolve provider endpoints: {e}') from e

    if session_storage is None:
        session_storage = build_session_storage(auth_config)
    if provider is None:
        provider = ProviderClient(provider_config)

    controller = AuthFlowController(provider, session_storage, scopes=auth_config.scope,
                                    login_timeout=auth_config.login_timeout)
    app = Flask(__name__)
    app.extensions['authprobe'] = FlaskAuthProbe(app, controller, auth_config)
    return app


def main(argv=None):
    parser = argparse.ArgumentParser(prog='authprobe',
                                     description='Test an OAuth2 Authorization Code login against an identity provider')
    parser.add_argument('--env-file', help='Read configuration from this .env file instead of the environment')
    parser.add_argument('--host', help='Listen address (overrides HOST)')
    parser.add_argument('--port', type=int, help='Listen port (overrides PORT)')
    args = parser.parse_args(argv)

    overrides = {}
    if args.host:
        overrides['host'] = args.host
    if args.port:
        overrides['port'] = args.port

    logging.basicConfig(level=logging.INFO,
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s', stream=sys.stderr)
    try:
        if args.env_file:
            auth_config = Config(args.env_file, **overrides)
        else:
            auth_config = Config.from_environment(**overrides)
        app = create_app(auth_config)
        logging.getLogger().setLevel(auth_config.log_level)
    except (ConfigurationError, SessionStoreUnavailable) as e:
        logger.critical(f'Startup failed: {e}')
        return 1

    logger.info(f'Server running on http://{auth_config.host}:{auth_config.port}')
    logger.info(f'Identity provider: {auth_config.authentik_url or auth_config.get_provider_domain()}')
    logger.info(f'Client ID: {auth_config.client_id}')
    logger.info(f'Callback URL: {auth_config.redirect_uri}')
    logger.debug(f'Configuration: {auth_config.dump_configuration()}')
    app.run(host=auth_config.host, port=auth_config.port)
    return 0


if __name__ == '__main__':
    sys.exit(main())
