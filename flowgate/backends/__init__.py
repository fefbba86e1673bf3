"""
Backend clients and the per-kind client registry.

The registry creates one client per ``BackendKind`` on first use and hands
the same instance out afterwards, so HTTP sessions and Galaxy API keys are
reused across requests.
"""

import threading
from pathlib import Path
from typing import Callable, Dict, Optional

from flowgate.backends.base_client import (
    CHUNK_SIZE,
    BackendClient,
    BackendClientConfig,
    basic_auth_header,
)
from flowgate.backends.galaxy import DEFAULT_LIBRARY, GalaxyClient
from flowgate.backends.genepattern_rest import GenePatternRestClient
from flowgate.backends.genepattern_soap import GenePatternSoapClient
from flowgate.backends.mock import MockClient
from flowgate.core.server_registry import BackendKind


class ClientRegistry:
    """Lazily built backend clients, keyed by backend kind."""

    def __init__(
        self,
        config: Optional[BackendClientConfig] = None,
        galaxy_result_root: Optional[Path] = None,
        galaxy_library: str = DEFAULT_LIBRARY,
        galaxy_history_id: Optional[str] = None,
        clients: Optional[Dict[BackendKind, BackendClient]] = None,
    ):
        self.config = config or BackendClientConfig()
        self.galaxy_result_root = Path(galaxy_result_root or "galaxy_results")
        self.galaxy_library = galaxy_library
        self.galaxy_history_id = galaxy_history_id
        self._clients: Dict[BackendKind, BackendClient] = dict(clients or {})
        self._lock = threading.Lock()
        self._factories: Dict[BackendKind, Callable[[], BackendClient]] = {
            BackendKind.GENEPATTERN_REST: lambda: GenePatternRestClient(self.config),
            BackendKind.GENEPATTERN_SOAP: lambda: GenePatternSoapClient(self.config),
            BackendKind.GALAXY: lambda: GalaxyClient(
                self.galaxy_result_root,
                self.config,
                library_name=self.galaxy_library,
                history_id=self.galaxy_history_id,
            ),
            BackendKind.MOCK: lambda: MockClient(config=self.config),
        }

    @classmethod
    def from_settings(cls, settings) -> "ClientRegistry":
        return cls(
            config=BackendClientConfig(
                timeout=settings.BACKEND_TIMEOUT, verify_ssl=settings.SSL_VERIFY
            ),
            galaxy_result_root=settings.GALAXY_RESULT_ROOT,
            galaxy_library=settings.GALAXY_LIBRARY,
            galaxy_history_id=settings.GALAXY_HISTORY_ID,
        )

    def register(self, kind: BackendKind, client: BackendClient) -> None:
        with self._lock:
            self._clients[kind] = client

    def get(self, kind: BackendKind) -> BackendClient:
        with self._lock:
            if kind not in self._clients:
                self._clients[kind] = self._factories[kind]()
            return self._clients[kind]


__all__ = [
    "CHUNK_SIZE",
    "BackendClient",
    "BackendClientConfig",
    "basic_auth_header",
    "ClientRegistry",
    "GalaxyClient",
    "GenePatternRestClient",
    "GenePatternSoapClient",
    "MockClient",
]
