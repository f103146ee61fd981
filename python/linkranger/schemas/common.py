"""Shared request envelope for RPC-style endpoints.

Clients send {"data": {...}} with camelCase keys; handlers read snake_case
attributes.
"""

from typing import Annotated, Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, StringConstraints
from pydantic.alias_generators import to_camel

T = TypeVar("T")

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class RpcModel(BaseModel):
    """Base for request payloads: camelCase on the wire, either name accepted."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DataRequest(BaseModel, Generic[T]):
    """{"data": T} request envelope."""

    data: T


class EmptyPayload(RpcModel):
    pass


class UserScopedPayload(RpcModel):
    """Payloads that name the acting user; must match the authenticated viewer."""

    user_id: UUID

