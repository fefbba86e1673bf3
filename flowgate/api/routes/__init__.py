"""
FlowGate API - route modules.
"""

from . import analyses, health, results, task_status

__all__ = ["analyses", "health", "results", "task_status"]
