import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class SessionState(str, Enum):
    ANONYMOUS = 'anonymous'
    PENDING = 'pending'
    AUTHENTICATED = 'authenticated'


@dataclass(frozen=True)
class Principal:
    subject: str
    preferred_username: Optional[str] = None
    display_name: Optional[str] = None
    email: Optional[str] = None
    groups: tuple = ()
    claims: dict = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_claims(cls, claims: dict):
        # Only well-known fields are read, anything else stays in `claims`
        subject = claims.get('sub')
        if not isinstance(subject, str) or not subject:
            raise ValueError("Claim 'sub' is missing or empty")
        groups = claims.get('groups')
        if not isinstance(groups, (list, tuple)):
            groups = ()
        return cls(subject=subject,
                   preferred_username=claims.get('preferred_username'),
                   display_name=claims.get('name'),
                   email=claims.get('email'),
                   groups=tuple(str(g) for g in groups),
                   claims=dict(claims))

    @property
    def name(self):
        return self.display_name or self.preferred_username

    def to_dict(self):
        return dict(subject=self.subject,
                    preferred_username=self.preferred_username,
                    display_name=self.display_name,
                    email=self.email,
                    groups=list(self.groups),
                    claims=dict(self.claims))

    @classmethod
    def from_dict(cls, data: dict):
        return cls(subject=data['subject'],
                   preferred_username=data.get('preferred_username'),
                   display_name=data.get('display_name'),
                   email=data.get('email'),
                   groups=tuple(data.get('groups') or ()),
                   claims=dict(data.get('claims') or {}))


@dataclass(frozen=True)
class AuthorizationRequestState:
    state: str
    scopes: tuple
    created_at: float

    def is_expired(self, max_age: float, now: float = None) -> bool:
        now = time.time() if now is None else now
        return now - self.created_at > max_age

    def to_dict(self):
        return dict(state=self.state, scopes=list(self.scopes), created_at=self.created_at)

    @classmethod
    def from_dict(cls, data: dict):
        return cls(state=data['state'], scopes=tuple(data.get('scopes') or ()),
                   created_at=data['created_at'])


@dataclass(frozen=True)
class RedirectInstruction:
    url: str
    state: str


@dataclass
class Session:
    """Server side record behind the session cookie.

    The store hands out copies: mutate a Session inside
    SessionHandler.update() or save it back explicitly.
    """
    session_id: str
    created_at: float
    expires_at: float
    last_seen: float
    status: SessionState = SessionState.ANONYMOUS
    principal: Optional[Principal] = None
    auth_request: Optional[AuthorizationRequestState] = None

    @classmethod
    def new(cls, session_id: str, ttl: float, now: float = None):
        now = time.time() if now is None else now
        return cls(session_id=session_id, created_at=now, expires_at=now + ttl, last_seen=now)

    def is_expired(self, idle_timeout: float = None, now: float = None) -> bool:
        now = time.time() if now is None else now
        if now >= self.expires_at:
            return True
        if idle_timeout and now - self.last_seen > idle_timeout:
            return True
        return False

    @property
    def is_authenticated(self):
        return self.status == SessionState.AUTHENTICATED and self.principal is not None

    def begin_login(self, auth_request: AuthorizationRequestState):
        self.auth_request = auth_request
        self.status = SessionState.PENDING

    def consume_auth_request(self):
        # Single use: whoever calls this first gets the request, later calls get None
        auth_request, self.auth_request = self.auth_request, None
        return auth_request

    def authenticate(self, principal: Principal):
        self.principal = principal
        self.auth_request = None
        self.status = SessionState.AUTHENTICATED

    def reset(self):
        self.principal = None
        self.auth_request = None
        self.status = SessionState.ANONYMOUS

    def to_dict(self):
        return dict(session_id=self.session_id,
                    created_at=self.created_at,
                    expires_at=self.expires_at,
                    last_seen=self.last_seen,
                    status=self.status.value,
                    principal=self.principal.to_dict() if self.principal else None,
                    auth_request=self.auth_request.to_dict() if self.auth_request else None)

    @classmethod
    def from_dict(cls, data: dict):
        principal = data.get('principal')
        auth_request = data.get('auth_request')
        return cls(session_id=data['session_id'],
                   created_at=data['created_at'],
                   expires_at=data['expires_at'],
                   last_seen=data.get('last_seen', data['created_at']),
                   status=SessionState(data.get('status', SessionState.ANONYMOUS.value)),
                   principal=Principal.from_dict(principal) if principal else None,
                   auth_request=AuthorizationRequestState.from_dict(auth_request) if auth_request else None)
