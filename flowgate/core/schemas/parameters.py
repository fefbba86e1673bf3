"""Resolved submission parameters produced by the parameter binder."""

from typing import Iterator, List, Optional

from pydantic import BaseModel, Field

from flowgate.core.schemas.catalog import ParamType


class GeneratedFile(BaseModel):
    """A file produced at bind time (e.g. the metadata annotation table)."""

    name: str
    content: str


class ResolvedParameter(BaseModel):
    """
    A module parameter bound to concrete values.

    ``values`` holds scalars or file paths in order. ``generated`` is set for
    parameters whose value is a file built from the dataset rather than one
    that already exists on disk.
    """

    key: str
    type: ParamType
    values: List[str] = Field(default_factory=list)
    order: Optional[int] = None
    generated: Optional[GeneratedFile] = None

    @property
    def is_file(self) -> bool:
        return self.type in (ParamType.FILE, ParamType.DIR, ParamType.DATASET)


class ResolvedParameters(BaseModel):
    """
    Resolved parameters in module declaration order.

    ``experiment_id`` names the experiment the inputs belong to; backends
    that stage inputs remotely file them under it.
    """

    items: List[ResolvedParameter] = Field(default_factory=list)
    experiment_id: Optional[int] = None

    def __iter__(self) -> Iterator[ResolvedParameter]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def get(self, key: str) -> Optional[ResolvedParameter]:
        for item in self.items:
            if item.key == key:
                return item
        return None
