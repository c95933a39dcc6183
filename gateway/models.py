"""Data model shared by the gateway components."""
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

Number = Union[int, float]


class Node(BaseModel):
    """One queryable daemon endpoint."""

    model_config = ConfigDict(frozen=True)

    host: str
    port: int = Field(gt=0, lt=65536)

    @property
    def identity(self) -> str:
        return f"{self.host}:{self.port}"

    def as_dict(self) -> Dict[str, Any]:
        return {"host": self.host, "port": self.port}


class Pool(BaseModel):
    """A mining pool's stats endpoint."""

    model_config = ConfigDict(frozen=True)

    name: str
    url: str

    def as_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "url": self.url}


@dataclass(frozen=True)
class AggregationResult:
    """
    Summary of one fan-out round.

    ``cnt`` counts every source asked, ``ans`` only those that produced a
    usable value. When ``ans`` is zero the statistics are ``None`` and the
    vote is the empty-input default, so callers must check ``ans`` first.
    """

    max: Optional[Number]
    min: Optional[Number]
    avg: Optional[Number]
    med: Optional[Number]
    cnt: int
    ans: int
    con: float
    win: Number
    cached: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class MirrorEvent:
    """A lifecycle signal from the mirror store."""

    kind: str  # "ready", "error" or "info"
    message: str = ""
