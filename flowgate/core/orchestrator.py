"""
Composition root of the orchestration layer.

Wires the registry, the backend clients, the store and the notifier into
the launcher, tracker, retriever and sweeper shared by the API and the CLI.
"""

from typing import Optional

from flowgate.backends import ClientRegistry
from flowgate.config.settings import Settings, get_settings
from flowgate.core.analysis_store import AnalysisStore
from flowgate.core.job_launcher import JobLauncher
from flowgate.core.notifier import FanoutNotifier
from flowgate.core.result_retriever import ResultRetriever
from flowgate.core.server_registry import ServerRegistry
from flowgate.core.status_tracker import StatusSweeper, StatusTracker
from flowgate.utils.logger import get_logger

logger = get_logger(__name__)


class Orchestrator:
    """Holds one instance of every service for the lifetime of a process."""

    def __init__(
        self,
        registry: ServerRegistry,
        clients: ClientRegistry,
        store: AnalysisStore,
        notifier: Optional[FanoutNotifier] = None,
        poll_workers: int = 4,
        sweep_interval: float = 0,
        callback_token: Optional[str] = None,
    ):
        self.registry = registry
        self.clients = clients
        self.store = store
        self.notifier = notifier or FanoutNotifier()
        self.callback_token = callback_token

        self.launcher = JobLauncher(registry, clients, store)
        self.tracker = StatusTracker(
            registry, clients, store, self.notifier, max_workers=poll_workers
        )
        self.retriever = ResultRetriever(registry, clients)
        self.sweeper = StatusSweeper(self.tracker, sweep_interval)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "Orchestrator":
        settings = settings or get_settings()
        logger.debug(
            f"Building orchestrator (catalog={settings.CATALOG_PATH}, "
            f"store={settings.STORE_PATH})"
        )
        return cls(
            registry=ServerRegistry.from_file(settings.CATALOG_PATH),
            clients=ClientRegistry.from_settings(settings),
            store=AnalysisStore(settings.STORE_PATH),
            poll_workers=settings.POLL_WORKERS,
            sweep_interval=settings.SWEEP_INTERVAL,
            callback_token=settings.CALLBACK_TOKEN,
        )
