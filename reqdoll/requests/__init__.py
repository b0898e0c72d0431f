"""
This module provides API request contexts: HTTP clients that share cookies
and storage state with browser sessions while keeping response bodies
available until they are disposed.
"""

from .context import APIRequest, APIRequestContext, HttpCredentials
from .har_recorder import HarCapture
from .options import FilePayload, FormData, RequestOptions
from .request import RequestTemplate
from .response import APIResponse
from .storage_state import StorageStateCodec

__all__ = [
    'APIRequest',
    'APIRequestContext',
    'APIResponse',
    'FilePayload',
    'FormData',
    'HarCapture',
    'HttpCredentials',
    'RequestOptions',
    'RequestTemplate',
    'StorageStateCodec',
]
