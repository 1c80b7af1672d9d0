"""Retail price harvester – crawl, stage, queue and deliver price snapshots.

The pieces a runner wires together:

* :class:`SiteCrawler`   – walks a site's list pages, one batch per page
* :class:`StagingStore`  – append-only raw rows, read back as the latest snapshot
* :class:`SyncQueue`     – durable delivery entries with scheduled retries
* :class:`BackendClient` – chunked POSTs to the ingestion API
* :class:`SyncWorker`    – drains the queue on an interval

:class:`harvester.orchestrator.ScrapeRunner` ties them into one run per site.
"""

from .backend import BackendClient, DeliveryError  # noqa: F401
from .crawler import SiteCrawler  # noqa: F401
from .staging import StagingStore  # noqa: F401
from .sync_queue import SyncQueue  # noqa: F401
from .worker import SyncWorker  # noqa: F401
