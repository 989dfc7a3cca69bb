# makeup_preview/services/clients/__init__.py
from .factory import get_replicate_client, get_vision_client_and_model
from .replicate_client import (
    ReplicateAsyncClient,
    ReplicateJobError,
    ReplicateTimeoutError,
    ServiceNotConfiguredError,
)

__all__ = [
    "ReplicateAsyncClient",
    "ReplicateJobError",
    "ReplicateTimeoutError",
    "ServiceNotConfiguredError",
    "get_replicate_client",
    "get_vision_client_and_model",
]
