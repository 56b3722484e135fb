"""
File system store - one JSON file per content type.
"""

from __future__ import annotations

from pathlib import Path
from urllib.parse import quote, unquote

from replica.storage.base import BaseStore

SUFFIX = ".json"


class FileSystemStore(BaseStore):
    """
    Directory-backed storage.

    Each content type is written to ``<root>/<content type>.json``. Files are
    replaced atomically through a temporary file so that a crash never leaves
    a half-written collection behind.
    """

    def __init__(self, root: str | Path):
        self._root = Path(root).expanduser()

    @property
    def root(self) -> Path:
        return self._root

    async def initialize(self) -> None:
        self._root.mkdir(parents=True, exist_ok=True)

    def _path_for(self, content_type: str) -> Path:
        return self._root / f"{quote(content_type, safe='')}{SUFFIX}"

    async def get_all_data(self) -> dict[str, str]:
        if not self._root.exists():
            return {}

        data: dict[str, str] = {}
        for path in sorted(self._root.glob(f"*{SUFFIX}")):
            content_type = unquote(path.name[: -len(SUFFIX)])
            data[content_type] = path.read_text(encoding="utf-8")
        return data

    async def get_data(self, content_type: str) -> str | None:
        path = self._path_for(content_type)
        return path.read_text(encoding="utf-8") if path.exists() else None

    async def save_data(self, content_type: str, data: str) -> None:
        self._root.mkdir(parents=True, exist_ok=True)
        path = self._path_for(content_type)
        tmp_path = path.with_name(path.name + ".tmp")
        tmp_path.write_text(data, encoding="utf-8")
        tmp_path.replace(path)

    async def purge(self, content_type: str) -> None:
        self._path_for(content_type).unlink(missing_ok=True)

    async def purge_all(self) -> None:
        if not self._root.exists():
            return
        for path in self._root.glob(f"*{SUFFIX}"):
            path.unlink(missing_ok=True)
