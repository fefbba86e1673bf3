"""
FlowGate API - request dependencies.

The current user comes from the ``X-User`` / ``X-User-Roles`` headers set by
the authenticating front end.
"""

from typing import List, Optional

from fastapi import Depends, Header, HTTPException, Request
from pydantic import BaseModel, Field

from flowgate.core.orchestrator import Orchestrator
from flowgate.core.schemas.analysis import Analysis

ADMIN_ROLES = frozenset({"administrator", "admin"})


class UserContext(BaseModel):
    username: str
    roles: List[str] = Field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return any(role.lower() in ADMIN_ROLES for role in self.roles)

    def can_access(self, analysis: Analysis) -> bool:
        return self.is_admin or analysis.user == self.username


def get_orchestrator(request: Request) -> Orchestrator:
    """Dependency to get the orchestrator from app state."""
    return request.app.state.orchestrator


def get_current_user(
    x_user: Optional[str] = Header(None),
    x_user_roles: Optional[str] = Header(None),
) -> UserContext:
    if not x_user or not x_user.strip():
        raise HTTPException(status_code=401, detail="Authentication required")
    roles = [r.strip() for r in (x_user_roles or "").split(",") if r.strip()]
    return UserContext(username=x_user.strip(), roles=roles)


def get_accessible_analysis(
    analysis_id: int,
    user: UserContext = Depends(get_current_user),
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> Analysis:
    """Load an analysis the current user may see (AnalysisNotFoundError -> 404)."""
    analysis = orchestrator.store.get(analysis_id)
    if not user.can_access(analysis):
        raise HTTPException(status_code=403, detail="Not allowed to access this analysis")
    return analysis
