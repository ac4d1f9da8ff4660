"""Local durable key-value store interface."""

from typing import Protocol, TypeVar

from pydantic import BaseModel

ModelT = TypeVar("ModelT", bound=BaseModel)


class KeyValueStore(Protocol[ModelT]):
    """Opaque async durable storage keyed by string."""

    async def wait_for_ready(self) -> None:
        """Return once the store can serve reads and writes."""

    async def get(self, key: str) -> ModelT | None:
        """Return the value stored under a key, if any."""

    async def set(self, key: str, value: ModelT) -> None:
        """Store a value under a key, replacing any previous value."""

    async def delete(self, key: str) -> None:
        """Remove a key; missing keys are ignored."""

    async def get_all(self) -> list[ModelT]:
        """Return every stored value."""
