"""
Server registry: connection descriptors, backend classification and catalog
lookups.

The catalog (servers, modules, datasets) is owned by the host application;
here it is read from a JSON document validated by pydantic. Passwords are
never part of the catalog; they are resolved per call by a
``CredentialProvider``.
"""

import os
import re
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import List, Mapping, Optional

from pydantic import SecretStr, ValidationError

from flowgate.core.exceptions import ConfigurationError
from flowgate.core.schemas.catalog import (
    AnalysisServer,
    Catalog,
    Credentials,
    Dataset,
    Module,
    ServerPlatform,
)
from flowgate.utils.logger import get_logger

logger = get_logger(__name__)


class BackendKind(str, Enum):
    """Protocol family used to talk to a server."""

    GENEPATTERN_SOAP = "genepattern_soap"
    GENEPATTERN_REST = "genepattern_rest"
    GALAXY = "galaxy"
    MOCK = "mock"


def classify(server: Optional[AnalysisServer]) -> BackendKind:
    """
    Decide the backend kind of a server without any network I/O.

    An explicit platform flag wins; GenePattern servers reached over https
    use the SOAP webservice, plain http ones the REST API.

    Raises:
        ConfigurationError: If no server is given
    """
    if server is None:
        raise ConfigurationError("No analysis server configured")

    if server.platform == ServerPlatform.GALAXY:
        return BackendKind.GALAXY
    if server.platform == ServerPlatform.MOCK or server.url.startswith("mock://"):
        return BackendKind.MOCK
    if server.url.lower().startswith("https://"):
        return BackendKind.GENEPATTERN_SOAP
    return BackendKind.GENEPATTERN_REST


class CredentialProvider(ABC):
    """Resolves credentials for a server at call time."""

    @abstractmethod
    def credentials_for(self, server: AnalysisServer) -> Credentials:
        pass


class EnvCredentialProvider(CredentialProvider):
    """
    Reads server passwords from the environment.

    The password of server ``name`` lives in ``FLOWGATE_SERVER_<NAME>_PASSWORD``
    where ``<NAME>`` is the upper-cased server name with every
    non-alphanumeric character replaced by ``_``. A missing variable yields an
    empty password.
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self._environ = environ if environ is not None else os.environ

    @staticmethod
    def env_key(server_name: str) -> str:
        slug = re.sub(r"[^A-Z0-9]", "_", server_name.upper())
        return f"FLOWGATE_SERVER_{slug}_PASSWORD"

    def credentials_for(self, server: AnalysisServer) -> Credentials:
        password = self._environ.get(self.env_key(server.name), "")
        if not password:
            logger.debug(f"No password configured for server '{server.name}'")
        return Credentials(username=server.username, password=SecretStr(password))


class ServerRegistry:
    """Lookup of servers, modules and datasets plus credential resolution."""

    def __init__(
        self,
        catalog: Optional[Catalog] = None,
        credential_provider: Optional[CredentialProvider] = None,
    ):
        self.catalog = catalog or Catalog()
        self.credential_provider = credential_provider or EnvCredentialProvider()

    @classmethod
    def from_file(
        cls, path: Path, credential_provider: Optional[CredentialProvider] = None
    ) -> "ServerRegistry":
        """
        Load the catalog from a JSON document.

        A missing file yields an empty registry; an invalid one is a
        configuration error.
        """
        path = Path(path)
        if not path.exists():
            logger.warning(f"Catalog file {path} not found, starting empty")
            return cls(Catalog(), credential_provider)

        try:
            catalog = Catalog.from_file(path)
        except (ValueError, ValidationError) as e:
            raise ConfigurationError(
                f"Invalid catalog file {path}: {e}", {"path": str(path)}
            ) from e

        logger.info(
            f"Loaded catalog from {path}: {len(catalog.servers)} servers, "
            f"{len(catalog.modules)} modules, {len(catalog.datasets)} datasets"
        )
        return cls(catalog, credential_provider)

    def list_servers(self) -> List[AnalysisServer]:
        return list(self.catalog.servers)

    def get_server(self, name: str) -> AnalysisServer:
        for server in self.catalog.servers:
            if server.name == name:
                return server
        raise ConfigurationError(
            f"Analysis server '{name}' is not configured", {"server": name}
        )

    def get_module(self, module_id: int) -> Optional[Module]:
        for module in self.catalog.modules:
            if module.id == module_id:
                return module
        return None

    def get_dataset(self, dataset_id: int) -> Optional[Dataset]:
        for dataset in self.catalog.datasets:
            if dataset.id == dataset_id:
                return dataset
        return None

    def server_for(self, module: Module) -> AnalysisServer:
        """
        Return the server a module is bound to.

        Raises:
            ConfigurationError: If the module has no server or it is unknown
        """
        if not module.server:
            raise ConfigurationError(
                f"Module '{module.name}' has no analysis server",
                {"module_id": module.id},
            )
        return self.get_server(module.server)

    def classify(self, server: Optional[AnalysisServer]) -> BackendKind:
        return classify(server)

    def credentials_for(self, server: AnalysisServer) -> Credentials:
        return self.credential_provider.credentials_for(server)
