from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from .errors import UnpersistedEntityError


class Persisted(BaseModel):
    """Identifier assigned by the store."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["persisted"] = "persisted"
    value: str = Field(min_length=1)


class Provisional(BaseModel):
    """Local key for an entity the store has not confirmed yet."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["provisional"] = "provisional"
    key: str = Field(min_length=1)


EntityId = Annotated[Union[Persisted, Provisional], Field(discriminator="kind")]


def provisional(prefix: str = "local") -> Provisional:
    return Provisional(key=f"{prefix}-{uuid4().hex[:12]}")


def persisted_id(entity: Any) -> Optional[str]:
    ref = getattr(entity, "id", None)
    if isinstance(ref, Persisted):
        return ref.value
    return None


def require_persisted(entity: Any, action: str) -> str:
    value = persisted_id(entity)
    if value is None:
        label = getattr(entity, "name", None) or type(entity).__name__
        raise UnpersistedEntityError(f"Cannot {action}: '{label}' has not been saved yet")
    return value


def same_id(left: Any, right: Any) -> bool:
    return left is not None and left == right
