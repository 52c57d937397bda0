"""
Service composition for indexsync.

Wires the connector, mapping loader, reconcilers, crawl scheduler and
incremental synchronizer from one configuration, and closes the connector
(draining any batched writes) on shutdown.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .indexer.reconciler import EntityKindSpec, Reconciler
from .indexer.scheduler import CrawlScheduler
from .indexer.sources import EntitySource, SocialGraph, WhitelistEnricher
from .models.config import SyncConfig
from .storage.connector import IndexConnector
from .storage.factory import create_connector
from .storage.mappings import MappingLoader
from .sync.events import LifecycleEvent
from .sync.synchronizer import IncrementalSynchronizer

logger = logging.getLogger(__name__)


@dataclass
class SyncSources:
    """Source-of-record collaborators per entity kind"""
    profiles: Optional[EntitySource] = None
    activities: Optional[EntitySource] = None
    messages: Optional[EntitySource] = None
    social_graph: Optional[SocialGraph] = None


class IndexSyncService:
    """
    Runs crawler and incremental synchronizer against one index.

    A kind that is enabled without a source logs an error and stays
    inactive; the rest of the service still starts.
    """

    def __init__(
        self,
        config: SyncConfig,
        sources: SyncSources,
        connector: Optional[IndexConnector] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.config = config
        self.sources = sources
        self.connector = connector or create_connector(config.connector)

        self.mapping_loader = MappingLoader(
            self.connector,
            config.index,
            config.mapping.types,
            mapping_file=config.mapping.file
        )

        self.whitelist: Optional[WhitelistEnricher] = None
        if config.add_friends:
            if sources.social_graph is None:
                logger.error("add_friends is enabled but no social graph is configured; whitelists disabled")
            else:
                self.whitelist = WhitelistEnricher(sources.social_graph)

        self.reconcilers = self._build_reconcilers()
        self.scheduler = CrawlScheduler(
            self.reconcilers,
            self.connector,
            config.index,
            config.crawl,
            mapping_loader=self.mapping_loader if config.mapping.load else None,
            clock=clock
        )
        self.synchronizer = IncrementalSynchronizer(
            self.connector,
            config,
            profile_source=sources.profiles,
            whitelist=self.whitelist
        )
        self._started = False

    def _build_reconcilers(self) -> List[Reconciler]:
        candidates = [
            ("profiles", self.config.profiles, self.sources.profiles, False, False, None),
            ("activities", self.config.activities, self.sources.activities, False, True, self.whitelist),
            ("messages", self.config.messages, self.sources.messages, True, False, None),
        ]

        reconcilers = []
        for name, kind_config, source, multi_owner, stamp_origin, enricher in candidates:
            if not kind_config.enabled:
                continue
            if source is None:
                logger.error(f"{name} crawling is enabled but no source is configured; skipping")
                continue
            reconcilers.append(Reconciler(
                EntityKindSpec(
                    name=name,
                    index=self.config.index,
                    doc_type=kind_config.doc_type,
                    source=source,
                    multi_owner=multi_owner,
                    stamp_origin=stamp_origin,
                    enricher=enricher
                ),
                self.connector
            ))
        return reconcilers

    async def start(self) -> None:
        """Load mappings if configured and start the crawl scheduler"""
        if self._started:
            return
        if self.config.mapping.load:
            await self.mapping_loader.load()
        await self.scheduler.start()
        self._started = True
        logger.info(f"Index sync service started for '{self.config.index}'")

    async def stop(self) -> None:
        """Stop crawling and close the connector, flushing pending writes"""
        await self.scheduler.stop()
        await self.connector.close()
        self._started = False
        logger.info("Index sync service stopped")

    async def handle_event(self, event: LifecycleEvent) -> Dict[str, Any]:
        return await self.synchronizer.handle_event(event)

    def get_status(self) -> Dict[str, Any]:
        return {
            "index": self.config.index,
            "started": self._started,
            "scheduler": self.scheduler.get_status(),
            "synchronizer": self.synchronizer.get_status()
        }

    async def __aenter__(self) -> 'IndexSyncService':
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()
