SESSION_ID_VAR_NAME = 'authprobe-session-id'

HOME_ROUTE = '/'
LOGIN_ROUTE = '/auth/login'
CALLBACK_ROUTE = '/auth/callback'
LOGOUT_ROUTE = '/logout'
PROTECTED_ROUTE = '/protected'
DEBUG_ROUTE = '/debug'
ERROR_ROUTE = '/error'
