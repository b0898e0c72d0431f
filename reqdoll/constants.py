from enum import Enum

DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_REDIRECTS = 20
DEFAULT_USER_AGENT = 'reqdoll/0.1'

REDIRECT_STATUS_CODES = frozenset({301, 302, 303, 307, 308})

# Status codes that turn the follow-up request into a body-less GET
METHOD_CHANGING_REDIRECTS = frozenset({301, 302, 303})

STORAGE_STATE_SESSION_EXPIRES = -1


class RedirectPolicy(str, Enum):
    FOLLOW = 'follow'
    MANUAL = 'manual'
