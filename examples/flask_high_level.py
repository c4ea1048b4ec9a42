from flask import Flask
from AuthProbe import Config, SessionHandler, ProviderClient, AuthFlowController
from AuthProbe.frameworks.flask import FlaskAuthProbe

auth_config = Config('.env')
session_storage = SessionHandler(mode='redis', namespace=__name__, ttl=auth_config.session_ttl)
controller = AuthFlowController(ProviderClient(auth_config.provider_config()), session_storage,
                                scopes=auth_config.scope)

app = Flask(__name__)
auth = FlaskAuthProbe(app, controller, auth_config)


@app.route('/hello')
@auth.login_required
def hello():
    principal = controller.get_principal(auth.current_session_id())
    return f"Hello {principal.name or principal.subject}!<br><a href='/logout'>Logout</a>"


if __name__ == "__main__":
    app.run(port=auth_config.port)
