"""Remote authority access.

- ``client``     -- ``RemoteClient``: JSON over HTTP via ``requests``.
- ``authority``  -- ``InMemoryAuthority``: same contract, explicit state.
- ``models``     -- ``BoardResponse``, ``SyncAck``, ``EntityAck``.
- ``errors``     -- ``ApiError``, ``ConflictError``.
"""

from .authority import AuthorityState, InMemoryAuthority
from .client import Authority, RemoteClient
from .errors import ApiError, ConflictError
from .models import BoardResponse, EntityAck, SyncAck

__all__ = [
    "ApiError",
    "Authority",
    "AuthorityState",
    "BoardResponse",
    "ConflictError",
    "EntityAck",
    "InMemoryAuthority",
    "RemoteClient",
    "SyncAck",
]
