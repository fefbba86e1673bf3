"""
Catalog schemas: compute servers, modules and datasets.

These mirror the entities owned by the surrounding data-management
application. The orchestration layer only reads them.
"""

import json
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, SecretStr, field_validator


class ServerPlatform(str, Enum):
    """Explicit platform flag of an analysis server."""

    GENEPATTERN = "genepattern"
    GALAXY = "galaxy"
    MOCK = "mock"


class Credentials(BaseModel):
    """Credentials resolved at call time; the password never appears in repr or logs."""

    username: str = ""
    password: SecretStr = SecretStr("")

    @property
    def has_password(self) -> bool:
        return bool(self.password.get_secret_value())


class AnalysisServer(BaseModel):
    """Connection descriptor of a compute server (no stored password)."""

    name: str
    url: str
    username: str = ""
    platform: Optional[ServerPlatform] = None

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("url cannot be empty")
        return v.rstrip("/")


class ParamType(str, Enum):
    """Declared type of a module parameter."""

    FILE = "file"
    DIR = "dir"
    VALUE = "val"
    VAR = "var"
    DATASET = "ds"
    FIELD = "field"
    META = "meta"


class ModuleParam(BaseModel):
    """One declared parameter of a module."""

    id: int
    key: str
    type: ParamType = ParamType.VALUE
    default: Optional[str] = None
    basic: bool = True
    label: Optional[str] = None
    description: Optional[str] = None
    required: Optional[bool] = None
    order: Optional[int] = None

    @property
    def is_required(self) -> bool:
        if self.required is not None:
            return self.required
        return self.type == ParamType.DATASET

    @property
    def form_name(self) -> str:
        """Form field name used by the submission form."""
        return f"mp-{self.id}"


class Module(BaseModel):
    """A reusable analysis definition bound to one server."""

    id: int
    name: str
    title: Optional[str] = None
    label: Optional[str] = None
    description: Optional[str] = None
    server: Optional[str] = None
    render_result: Optional[str] = None
    params: List[ModuleParam] = Field(default_factory=list)


class ExpFile(BaseModel):
    """An experiment file referenced by a dataset."""

    id: int
    file_name: str
    file_path: str = ""
    metadata: Dict[str, str] = Field(default_factory=dict)

    @property
    def path(self) -> str:
        if not self.file_path:
            return self.file_name
        return str(Path(self.file_path) / self.file_name)


class Dataset(BaseModel):
    """Named, ordered collection of experiment files."""

    id: int
    experiment_id: Optional[int] = None
    name: str
    description: Optional[str] = None
    files: List[ExpFile] = Field(default_factory=list)


class Catalog(BaseModel):
    """Everything the orchestration layer reads from the host application."""

    servers: List[AnalysisServer] = Field(default_factory=list)
    modules: List[Module] = Field(default_factory=list)
    datasets: List[Dataset] = Field(default_factory=list)

    @classmethod
    def from_file(cls, path: Path) -> "Catalog":
        with open(path, "r", encoding="utf-8") as f:
            return cls(**json.load(f))
