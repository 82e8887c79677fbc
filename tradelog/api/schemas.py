from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


class PriceResponse(_WireModel):
    symbol: str
    resolved_symbol: str
    price: float
    timestamp: str
    source: str = "Yahoo Finance"


class BatchPriceResponse(_WireModel):
    prices: dict[str, float] = Field(default_factory=dict)
    failed: list[str] = Field(default_factory=list)
    timestamp: str


class SymbolSuggestion(_WireModel):
    symbol: str
    resolved_symbol: str
    name: str
    exchange: str = ""


class SymbolSearchResponse(_WireModel):
    query: str
    suggestions: list[SymbolSuggestion] = Field(default_factory=list)


class ErrorResponse(_WireModel):
    error: str
