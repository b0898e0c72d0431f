from reqdoll.constants import RedirectPolicy
from reqdoll.requests import (
    APIRequest,
    APIRequestContext,
    APIResponse,
    FilePayload,
    FormData,
    HarCapture,
    HttpCredentials,
    RequestOptions,
    RequestTemplate,
    StorageStateCodec,
)

__all__ = [
    'APIRequest',
    'APIRequestContext',
    'APIResponse',
    'FilePayload',
    'FormData',
    'HarCapture',
    'HttpCredentials',
    'RedirectPolicy',
    'RequestOptions',
    'RequestTemplate',
    'StorageStateCodec',
]
