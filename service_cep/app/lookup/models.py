"""
Data models for the CEP lookup core.
"""

from typing import Optional, Protocol
from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, ConfigDict, field_validator


class PostalRecord(BaseModel):
    """Address record as published by the ViaCEP directory.

    Field names are the ViaCEP wire contract. Fields the directory adds
    beyond these are kept so that cached payloads round-trip untouched.
    """

    model_config = ConfigDict(extra="allow")

    cep: str = ""
    logradouro: str = ""
    complemento: str = ""
    bairro: str = ""
    localidade: str = ""
    uf: str = ""
    ibge: str = ""
    gia: str = ""
    ddd: str = ""
    siafi: str = ""
    unidade: str = ""
    erro: Optional[bool] = None

    @field_validator(
        "cep", "logradouro", "complemento", "bairro", "localidade", "uf",
        "ibge", "gia", "ddd", "siafi", "unidade",
        mode="before"
    )
    @classmethod
    def null_as_empty(cls, value):
        return "" if value is None else value

    @property
    def not_found(self) -> bool:
        """True when the directory flagged the code as unknown."""
        return bool(self.erro)

    def to_payload(self) -> bytes:
        """Serialize for the cache table."""
        return self.model_dump_json(exclude_none=True).encode("utf-8")

    @classmethod
    def from_payload(cls, payload) -> "PostalRecord":
        """Deserialize a cached payload (bytes or str)."""
        return cls.model_validate_json(payload)


@dataclass
class CacheEntry:
    """Row of the cache table."""
    key: str
    payload: bytes
    updated_at: datetime


class CepStore(Protocol):
    """Persistent store contract used by the lookup core.

    ``read`` returns ``None`` for a missing row and raises for any other
    failure, so a plain miss can never be confused with a broken store.
    """

    async def read(self, key: str) -> Optional[CacheEntry]:
        ...

    async def upsert(self, key: str, payload: bytes, updated_at: datetime) -> None:
        ...

    async def ping(self) -> None:
        ...


class DirectoryProvider(Protocol):
    """Directory provider contract used by the lookup core."""

    async def fetch(self, cep: str) -> PostalRecord:
        ...
