"""
Source-of-record collaborator interfaces.

The reconciliation engine and the incremental synchronizer only see the
source-of-record through these interfaces. Implementations raise
ConnectivityError when the source cannot be reached.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from ..models.documents import WHITELIST_FIELD, LocalEntity

logger = logging.getLogger(__name__)

# Fields requested while loading a pass
MINIMAL_FIELDS = ("id", "updated")


class EntitySource(ABC):
    """Per entity kind read access to the source-of-record"""

    @abstractmethod
    async def list_all(self, fields: Sequence[str] = MINIMAL_FIELDS) -> List[LocalEntity]:
        """
        List every entity of this kind.

        Multi-owner entities may appear once per owner or once with all
        owners in ``owner_ids``.

        Args:
            fields: Fields the source needs to return, at least id and updated
        """

    @abstractmethod
    async def fetch_full(self, owner_id: str, ids: Sequence[str]) -> List[Dict[str, Any]]:
        """
        Fetch the full, index-ready documents of entities owned by owner_id.

        Documents carry an ``id`` field; unknown ids are left out.
        """

    async def fetch_one(self, owner_id: str, entity_id: str) -> Optional[Dict[str, Any]]:
        docs = await self.fetch_full(owner_id, [entity_id])
        return docs[0] if docs else None


class SocialGraph(ABC):
    """Friendship lookups used to build access whitelists"""

    @abstractmethod
    async def get_friend_ids(self, user_id: str) -> List[str]:
        ...


class WhitelistEnricher:
    """Inject the owner and the owner's friends as an access whitelist"""

    def __init__(self, social_graph: SocialGraph, field_name: str = WHITELIST_FIELD):
        self.social_graph = social_graph
        self.field_name = field_name

    async def whitelist_for(self, owner_id: str) -> List[str]:
        friends = await self.social_graph.get_friend_ids(owner_id)
        whitelist = [f for f in dict.fromkeys(friends) if f != owner_id]
        whitelist.append(owner_id)
        return whitelist

    async def __call__(self, owner_id: str, docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not docs:
            return docs
        whitelist = await self.whitelist_for(owner_id)
        for doc in docs:
            doc[self.field_name] = list(whitelist)
        return docs
