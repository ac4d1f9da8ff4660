"""Durable key-value store keeping one JSON file per key."""

import asyncio
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from nutrition_log.services.storage import KeyValueStore, ModelT


@dataclass
class JsonFileStore(KeyValueStore[ModelT]):
    """File-backed store; writes replace the file atomically."""

    directory: Path
    model: type[ModelT]
    _ready: bool = field(default=False, init=False)
    _locks: dict[str, asyncio.Lock] = field(default_factory=dict, init=False)

    @classmethod
    def create(
        cls, directory: str | Path, model: type[ModelT]
    ) -> "JsonFileStore[ModelT]":
        """Create a store rooted at a directory."""
        return cls(directory=Path(directory), model=model)

    async def wait_for_ready(self) -> None:
        if not self._ready:
            await asyncio.to_thread(self.directory.mkdir, parents=True, exist_ok=True)
            self._ready = True

    async def get(self, key: str) -> ModelT | None:
        await self.wait_for_ready()
        return await asyncio.to_thread(self._read, self._path(key))

    async def set(self, key: str, value: ModelT) -> None:
        path = self._path(key)
        await self.wait_for_ready()
        async with self._locks.setdefault(key, asyncio.Lock()):
            await asyncio.to_thread(self._write, path, value)

    async def delete(self, key: str) -> None:
        path = self._path(key)
        await self.wait_for_ready()
        async with self._locks.setdefault(key, asyncio.Lock()):
            await asyncio.to_thread(path.unlink, missing_ok=True)

    async def get_all(self) -> list[ModelT]:
        await self.wait_for_ready()
        return await asyncio.to_thread(self._read_all)

    def _path(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise ValueError(f"Invalid store key: {key!r}")
        return self.directory / f"{key}.json"

    def _read(self, path: Path) -> ModelT | None:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        return self.model.model_validate_json(raw)

    def _write(self, path: Path, value: ModelT) -> None:
        # Each write gets its own temp file; only complete files are renamed in.
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=self.directory,
            prefix=f".{path.stem}.",
            suffix=".tmp",
            delete=False,
        ) as handle:
            handle.write(value.model_dump_json(by_alias=True, indent=2))
        try:
            os.replace(handle.name, path)
        except OSError:
            Path(handle.name).unlink(missing_ok=True)
            raise

    def _read_all(self) -> list[ModelT]:
        values = []
        for path in sorted(self.directory.glob("*.json")):
            value = self._read(path)
            if value is not None:
                values.append(value)
        return values
