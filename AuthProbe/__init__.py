from AuthProbe.config import Config, ProviderConfig
from AuthProbe.session import SessionHandler
from AuthProbe.auth import ProviderClient
from AuthProbe.flow import AuthFlowController
from AuthProbe.models import Principal, Session, SessionState
