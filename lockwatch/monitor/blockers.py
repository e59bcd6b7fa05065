"""Query blocker monitoring for one database: sample, gate, persist."""

from __future__ import annotations

import logging

from lockwatch.config.models import DatabaseConfig
from lockwatch.db.connection import ConnectionManager, Transaction
from lockwatch.monitor.blocker_history import HistoryWriter
from lockwatch.monitor.blocker_sampler import BlockerSampler, SampleSet
from lockwatch.monitor.features import FeatureGate

logger = logging.getLogger(__name__)


class BlockerMonitor:
    """Captures blocker samples from one database and records them in history.

    Monitoring and history use separate connection managers, so a capture
    never runs inside the history write transaction even when both point at
    the same server.
    """

    def __init__(
        self,
        database_id: str,
        db: ConnectionManager,
        history: HistoryWriter,
        config: DatabaseConfig | None = None,
    ):
        self.database_id = database_id
        self.db = db
        self.history = history
        self.config = config
        self.features = FeatureGate(db)
        self.sampler = BlockerSampler(db, self.features, database=database_id)

    def capture_enabled(self) -> bool:
        return self.config is None or self.config.capture_query_blockers

    def supports_query_blocker_monitoring(self) -> bool:
        return self.features.supports_blocking_pids()

    def sample_blockers(self) -> SampleSet:
        """Current blocking graph; nothing is written."""
        return self.sampler.sample()

    def supports_history(self, raise_if_unsupported: bool = False) -> bool:
        return self.history.supports_history(raise_if_unsupported=raise_if_unsupported)

    def capture_and_persist(
        self, save_empty_samples: bool = True, tx: Transaction | None = None
    ) -> SampleSet | None:
        """Sample and store the result.

        Returns None without touching the server when capture is disabled
        for this database. An empty sample is stored only when
        ``save_empty_samples`` is set.
        """
        if not self.capture_enabled():
            logger.debug("Blocker capture disabled for %s", self.database_id)
            return None

        sample_set = self.sample_blockers()
        if sample_set.sessions or save_empty_samples:
            self.history.persist(sample_set, tx)
        else:
            logger.debug("No blockers in %s, empty sample not stored", self.database_id)
        return sample_set
