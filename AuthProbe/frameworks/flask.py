import json
import logging
from datetime import datetime, timedelta, timezone
from functools import wraps
from urllib.parse import urlparse

from flask import g, jsonify, redirect, render_template_string, request, session

from AuthProbe.config import Config
from AuthProbe.errors import AuthError, SessionStoreUnavailable
from AuthProbe.flow import AuthFlowController
from AuthProbe.frameworks import (CALLBACK_ROUTE, DEBUG_ROUTE, ERROR_ROUTE, HOME_ROUTE, LOGIN_ROUTE, LOGOUT_ROUTE,
                                  PROTECTED_ROUTE, SESSION_ID_VAR_NAME)
from AuthProbe.pages import ANONYMOUS_PAGE, AUTHENTICATED_PAGE, BASE_STYLE, ERROR_PAGE

logger = logging.getLogger(__name__)


class FlaskAuthProbe(object):
    """Wires an AuthFlowController into a Flask app.

    Flask's signed session cookie only carries the server side session id;
    every handler resolves that id and hands it to the controller.
    """

    def __init__(self, app, controller: AuthFlowController, auth_config: Config, log_enabled: bool = True):
        self._flask_app = app
        self._controller = controller
        self._auth_config = auth_config
        self._log_enabled = log_enabled

        self._flask_app.secret_key = auth_config.cookie_secret_key
        self._flask_app.config.update(SESSION_COOKIE_HTTPONLY=True,
                                      SESSION_COOKIE_SAMESITE='Lax',
                                      PERMANENT_SESSION_LIFETIME=timedelta(seconds=auth_config.session_ttl))

        # The callback route follows the path of the configured callback address
        callback_route = urlparse(auth_config.redirect_uri or '').path or CALLBACK_ROUTE

        self._flask_app.add_url_rule(HOME_ROUTE, 'index', self._index_route_handler)
        self._flask_app.add_url_rule(LOGIN_ROUTE, 'login', self._login_route_handler)
        self._flask_app.add_url_rule(callback_route, 'callback', self._callback_route_handler)
        self._flask_app.add_url_rule(LOGOUT_ROUTE, 'logout', self._logout_route_handler)
        self._flask_app.add_url_rule(PROTECTED_ROUTE, 'protected', self.login_required(self._protected_route_handler))
        self._flask_app.add_url_rule(DEBUG_ROUTE, 'debug', self._debug_route_handler)
        self._flask_app.add_url_rule(ERROR_ROUTE, 'error', self._error_route_handler)
        self._flask_app.register_error_handler(SessionStoreUnavailable, self._store_unavailable_handler)

    def current_session_id(self):
        """Session id for this request, creating a fresh session on first contact."""
        if 'authprobe_session_id' in g:
            return g.authprobe_session_id

        storage = self._controller.session_storage
        session_id = session.get(SESSION_ID_VAR_NAME)
        if session_id and storage.get(session_id) is not None:
            storage.touch(session_id)
        else:
            session_id, _ = storage.create()
            session.permanent = True
            session[SESSION_ID_VAR_NAME] = session_id

        g.authprobe_session_id = session_id
        return session_id

    def login_required(self, f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not self._controller.is_authenticated(self.current_session_id()):
                if self._log_enabled:
                    logger.debug(f'Anonymous request to {request.path}, redirecting to {LOGIN_ROUTE}')
                return redirect(LOGIN_ROUTE)
            return f(*args, **kwargs)

        return decorated_function

    def _index_route_handler(self):
        principal = self._controller.get_principal(self.current_session_id())
        provider = self._auth_config.authentik_url or self._auth_config.get_provider_domain()
        if principal is None:
            return render_template_string(ANONYMOUS_PAGE, style=BASE_STYLE, provider=provider,
                                          client_id=self._auth_config.client_id, login_url=LOGIN_ROUTE)
        return render_template_string(AUTHENTICATED_PAGE, style=BASE_STYLE, provider=provider,
                                      principal=principal, claims=json.dumps(principal.claims, indent=2),
                                      protected_url=PROTECTED_ROUTE, logout_url=LOGOUT_ROUTE)

    def _login_route_handler(self):
        try:
            instruction = self._controller.initiate_login(self.current_session_id())
        except AuthError as e:
            logger.error(f'Cannot start login: {e}')
            return redirect(ERROR_ROUTE)
        return redirect(instruction.url)

    def _callback_route_handler(self):
        if self._log_enabled:
            logger.debug(f'Callback received with parameters: {", ".join(sorted(request.args.keys()))}')
        try:
            self._controller.complete_login(self.current_session_id(), request.args)
        except AuthError:
            # Detail is logged by the controller, the browser only gets the generic page
            return redirect(ERROR_ROUTE)
        return redirect(HOME_ROUTE)

    def _logout_route_handler(self):
        session_id = session.pop(SESSION_ID_VAR_NAME, None)
        if session_id:
            self._controller.logout(session_id)
        g.pop('authprobe_session_id', None)
        return redirect(HOME_ROUTE)

    def _protected_route_handler(self):
        principal = self._controller.get_principal(self.current_session_id())
        return jsonify(message='This is a protected route - you are authenticated!',
                       timestamp=datetime.now(timezone.utc).isoformat(),
                       user=dict(id=principal.subject,
                                 name=principal.name,
                                 email=principal.email,
                                 groups=list(principal.groups)))

    def _debug_route_handler(self):
        session_id = self.current_session_id()
        principal = self._controller.get_principal(session_id)
        return jsonify(isAuthenticated=principal is not None,
                       state=self._controller.get_state(session_id).value,
                       sessionID=session_id,
                       user=principal.to_dict() if principal else None)

    def _error_route_handler(self):
        return render_template_string(ERROR_PAGE, style=BASE_STYLE)

    def _store_unavailable_handler(self, error):
        logger.error(f'Session store error: {error}')
        return render_template_string(ERROR_PAGE, style=BASE_STYLE), 503
