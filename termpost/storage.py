"""JSON storage backend for collections, environments, history and settings."""

import copy
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, List, Optional

import structlog

from .config import Config
from .errors import NotFoundError, ParseError, StoreError, StoreIOError
from .models import (
    ApiRequest,
    CollectionFile,
    EnvironmentSet,
    HistoryEntry,
    HistoryFile,
    HTTPMethod,
    Settings,
)
from .tree import CollectionTree, Node

logger = structlog.get_logger("termpost.storage")


class StorageBackend:
    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config.from_env()
        self.config.ensure_dirs()
        self._collections: Optional[List[CollectionTree]] = None
        self.load_errors: List[ParseError] = []

    @contextmanager
    def _atomic_write(self, path: Path):
        """Yield a text handle; the target is replaced only if the block succeeds."""
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        except OSError as e:
            raise StoreIOError(f"Cannot write {path}: {e}") from e
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                yield handle
            os.replace(tmp_name, path)
        except OSError as e:
            raise StoreIOError(f"Cannot write {path}: {e}") from e
        finally:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)

    def _read(self, path: Path, model):
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ParseError(path, str(e)) from e
        try:
            return model.model_validate_json(text)
        except ValueError as e:
            raise ParseError(path, _first_line(e)) from e

    def _write(self, path: Path, model):
        with self._atomic_write(path) as handle:
            handle.write(model.model_dump_json(indent=2))

    # Collections

    def _collection_path(self, collection_id: str) -> Path:
        return self.config.collections_dir / f"{collection_id}.json"

    def load_collections(self) -> List[CollectionTree]:
        """Read every collection file. Unparseable files are skipped and recorded."""
        collections = []
        self.load_errors = []
        for path in sorted(self.config.collections_dir.glob("*.json")):
            try:
                data = self._read(path, CollectionFile)
                collections.append(CollectionTree.from_file(data))
            except (ParseError, StoreError) as e:
                logger.warning("Skipping unreadable collection", path=str(path), error=str(e))
                self.load_errors.append(e if isinstance(e, ParseError) else ParseError(path, str(e)))

        collections.sort(key=lambda c: c.name.lower())

        if not collections and not self.load_errors:
            sample = self._sample_collection()
            self._write(self._collection_path(sample.id), sample.to_file())
            collections.append(sample)

        self._collections = collections
        logger.info("Collections loaded", count=len(collections))
        return collections

    def _sample_collection(self) -> CollectionTree:
        sample = CollectionTree("Sample Collection")
        sample.add_request(ApiRequest(
            name="Get Users",
            url="https://jsonplaceholder.typicode.com/users",
        ))
        sample.add_request(ApiRequest(
            name="Create User",
            method=HTTPMethod.POST,
            url="https://jsonplaceholder.typicode.com/users",
            body='{"name": "John Doe", "email": "john@example.com"}',
        ))
        return sample

    def collections(self) -> List[CollectionTree]:
        if self._collections is None:
            return self.load_collections()
        return self._collections

    def get_collection(self, collection_id: str) -> CollectionTree:
        for collection in self.collections():
            if collection.id == collection_id:
                return collection
        raise NotFoundError("collection", collection_id)

    def _replace(self, updated: CollectionTree):
        """Persist ``updated`` and swap it into the cache only once the write succeeded."""
        self._write(self._collection_path(updated.id), updated.to_file())
        self._swap(updated)

    def _swap(self, updated: CollectionTree):
        collections = self.collections()
        for i, existing in enumerate(collections):
            if existing.id == updated.id:
                collections[i] = updated
                return
        collections.append(updated)

    def _mutate(self, collection_id: str, change: Callable[[CollectionTree], object]):
        working = copy.deepcopy(self.get_collection(collection_id))
        result = change(working)
        self._replace(working)
        return result

    def create_collection(self, name: str) -> CollectionTree:
        collection = CollectionTree(name)
        self._replace(collection)
        logger.info("Collection created", collection_id=collection.id, name=name)
        return collection

    def rename_collection(self, collection_id: str, name: str):
        def change(tree: CollectionTree):
            tree.name = name
        self._mutate(collection_id, change)

    def delete_collection(self, collection_id: str):
        collection = self.get_collection(collection_id)
        path = self._collection_path(collection_id)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StoreIOError(f"Cannot delete {path}: {e}") from e
        self.collections().remove(collection)
        logger.info("Collection deleted", collection_id=collection_id)

    def _ensure_unique(self, node_id: str):
        for collection in self.collections():
            if node_id in collection:
                raise StoreError(f"Duplicate id: {node_id}")

    def create_node(
        self,
        collection_id: str,
        parent_id: Optional[str],
        name: str,
        request: Optional[ApiRequest] = None,
    ) -> Node:
        """Create a folder (no request given) or a request under ``parent_id``."""
        if request is not None:
            request = request.model_copy(update={"name": name})
            self._ensure_unique(request.id)

        def change(tree: CollectionTree) -> Node:
            if request is None:
                return tree.add_folder(name, parent_id)
            return tree.add_request(request, parent_id)

        node = self._mutate(collection_id, change)
        logger.info("Node created", collection_id=collection_id, node_id=node.id, folder=node.is_folder)
        return node

    def rename_node(self, collection_id: str, node_id: str, name: str):
        self._mutate(collection_id, lambda tree: tree.rename(node_id, name))

    def delete_node(self, collection_id: str, node_id: str) -> List[str]:
        removed = self._mutate(collection_id, lambda tree: tree.remove(node_id))
        logger.info("Node deleted", collection_id=collection_id, node_id=node_id, removed=len(removed))
        return removed

    def update_request(self, collection_id: str, request: ApiRequest):
        self._mutate(collection_id, lambda tree: tree.update_request(request))

    def move_node(
        self,
        source_collection_id: str,
        node_id: str,
        dest_collection_id: str,
        dest_parent_id: Optional[str],
    ):
        if source_collection_id == dest_collection_id:
            self._mutate(source_collection_id, lambda tree: tree.move(node_id, dest_parent_id))
            return

        source = copy.deepcopy(self.get_collection(source_collection_id))
        dest = copy.deepcopy(self.get_collection(dest_collection_id))
        if dest_parent_id is not None and not dest.get(dest_parent_id).is_folder:
            raise StoreError("Destination is not a folder")
        dest.graft(source.detach(node_id), dest_parent_id)

        # Both files are written before either tree reaches the cache
        original_dest = self.get_collection(dest_collection_id)
        self._write(self._collection_path(dest.id), dest.to_file())
        try:
            self._write(self._collection_path(source.id), source.to_file())
        except StoreError:
            self._write(self._collection_path(original_dest.id), original_dest.to_file())
            raise
        self._swap(dest)
        self._swap(source)
        logger.info("Node moved", node_id=node_id, source=source_collection_id, dest=dest_collection_id)

    # Environments

    def load_environments(self) -> EnvironmentSet:
        path = self.config.environments_file
        if not path.exists():
            return EnvironmentSet.default()
        return self._read(path, EnvironmentSet)

    def save_environments(self, environments: EnvironmentSet):
        self._write(self.config.environments_file, environments)

    # History

    def load_history(self) -> List[HistoryEntry]:
        path = self.config.history_file
        if not path.exists():
            return []
        return self._read(path, HistoryFile).entries

    def append_history(self, entry: HistoryEntry, entries: List[HistoryEntry]) -> List[HistoryEntry]:
        """Return ``entries`` with ``entry`` prepended and pruned; persist the result."""
        updated = [entry] + list(entries)
        del updated[self.config.history_limit:]
        self._write(self.config.history_file, HistoryFile(entries=updated))
        return updated

    def clear_history(self):
        self._write(self.config.history_file, HistoryFile())

    # Settings

    def load_settings(self) -> Settings:
        path = self.config.settings_file
        if not path.exists():
            return Settings()
        return self._read(path, Settings)

    def save_settings(self, settings: Settings):
        self._write(self.config.settings_file, settings)


def _first_line(error: Exception) -> str:
    text = " ".join(str(error).split())
    return text[:200] if text else error.__class__.__name__

