"""FlowGate analysis job orchestration."""

from flowgate.version import __version__

__all__ = ["__version__"]
