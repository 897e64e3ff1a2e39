from __future__ import annotations

import logging

from geoindex.scheduling.task_type import TaskType
from geoindex.solr import client as solr_client

logger = logging.getLogger(__name__)


class SolrPingTask:
    """Periodic check that Solr is reachable; never fails the run."""

    task_type = TaskType.SOLR_PING
    label = "Solr ping task"
    description = "Ping Solr to ensure it is available."

    def execute(self, ctx) -> str:
        if solr_client.is_solr_available():
            return "Solr is available. Check succeeded."
        logger.warning("Solr is not available")
        return "Solr is not available. Check failed."
