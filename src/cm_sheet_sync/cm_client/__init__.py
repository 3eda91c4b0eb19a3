"""Campaign Manager API access."""

from .client import CHUNK_SIZE, RemoteClient, is_transient_error
from .service import CampaignManagerService, RemoteService

__all__ = [
    "CHUNK_SIZE",
    "CampaignManagerService",
    "RemoteClient",
    "RemoteService",
    "is_transient_error",
]
