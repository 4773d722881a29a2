"""
Persisted record shapes of the four caches.

Field names are the stable on-disk names; every loaded record is validated
so that a hand-edited or truncated cache is reported instead of silently
half-read.  Validation is strict: ``succ_val: "5"`` or ``succ_val: true``
is malformed, not coerced.
"""

from pydantic import BaseModel, ConfigDict, Field


class _CacheRecord(BaseModel):
    model_config = ConfigDict(strict=True)


class SuccessValueRecord(_CacheRecord):
    func: str = Field(min_length=1)
    succ_val: int = Field(ge=0)


class ApiRecord(_CacheRecord):
    api: str = Field(min_length=1)


class LoopRecord(_CacheRecord):
    file: str = Field(min_length=1)
    begin_line: int = Field(ge=1)
    begin_column: int = Field(ge=1)
    end_line: int = Field(ge=1)
    end_column: int = Field(ge=1)
