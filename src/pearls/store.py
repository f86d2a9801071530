"""Store: the one entry point that keeps content files, log, and index consistent.

Mutation order is content -> index -> log:

    create   write content, insert index row (undo the content write if
             that fails), append to the log, then embed (best effort)
    update   rewrite content if given, update the index row, rewrite the log
    delete   drop the index row and its vector, remove the content file,
             rewrite the log

A failed log write is reported but not undone: the index and the content
tree still agree, and `sync_to_log` rewrites the log from the index.
The log always wins on `sync_from_log`.
"""

from __future__ import annotations

import contextlib
import fcntl
import logging
import sqlite3
from typing import IO, TYPE_CHECKING

from pearls.content import ContentStore, hash_text
from pearls.embedder import get_embedder
from pearls.errors import (
    AlreadyExistsError,
    EmbedError,
    LogParseError,
    NotFoundError,
    PearlsError,
    StorageError,
    ValidationError,
)
from pearls.index import IndexStore, ListOptions
from pearls.jsonl import LogStore
from pearls.models import Status

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path
    from types import TracebackType

    from pearls.config import Paths, PearlsConfig
    from pearls.embedder import Embedder
    from pearls.models import Pearl

logger = logging.getLogger("pearls.store")


@contextlib.contextmanager
def _phase(phase: str, pearl_id: str = "") -> Iterator[None]:
    """Prefix errors with the operation and pearl ID; map OS/SQLite errors to StorageError."""
    where = f"{phase} {pearl_id}".rstrip()
    try:
        yield
    except LogParseError as exc:
        raise LogParseError(f"{where}: {exc}", line=exc.line) from exc
    except PearlsError as exc:
        raise type(exc)(f"{where}: {exc}") from exc
    except (OSError, sqlite3.Error) as exc:
        msg = f"{where}: {exc}"
        raise StorageError(msg) from exc


def embed_text(pearl: Pearl, content: str) -> str:
    """Text fed to the embedder: description and body, blank parts skipped."""
    return "\n\n".join(part for part in (pearl.description, content) if part)


class Store:
    """Orchestrates ContentStore, LogStore, and IndexStore (plus an optional embedder)."""

    def __init__(
        self,
        content: ContentStore,
        log: LogStore,
        index: IndexStore,
        embedder: Embedder | None = None,
        lock_path: Path | None = None,
    ) -> None:
        self.content = content
        self.log = log
        self.index = index
        self.embedder = embedder
        self.lock_path = lock_path
        self._lock_depth = 0
        self._lock_file: IO[str] | None = None

    @classmethod
    def open(cls, paths: Paths, cfg: PearlsConfig | None = None) -> Store:
        """Open the three stores under paths; attach an embedder if vector search is on."""
        if cfg is not None:
            paths = cfg.paths(paths.root)
        with _phase("open index"):
            index = IndexStore(paths.db_path)
        embedder = None
        if cfg is not None and cfg.vector_search.enabled:
            try:
                embedder = get_embedder(cfg.vector_search.model, cfg.vector_search.resolved_cache_dir)
            except EmbedError as exc:
                logger.warning("vector search disabled: %s", exc)
        return cls(
            ContentStore(paths.content_dir),
            LogStore(paths.log_path),
            index,
            embedder=embedder,
            lock_path=paths.lock_path,
        )

    def close(self) -> None:
        self.index.close()

    def __enter__(self) -> Store:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    @contextlib.contextmanager
    def _locked(self) -> Iterator[None]:
        """Hold an exclusive flock on the lock file. Re-entrant within one Store."""
        if self.lock_path is None:
            yield
            return
        if self._lock_depth == 0:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            self._lock_file = self.lock_path.open("a")
            fcntl.flock(self._lock_file, fcntl.LOCK_EX)
        self._lock_depth += 1
        try:
            yield
        finally:
            self._lock_depth -= 1
            if self._lock_depth == 0 and self._lock_file is not None:
                fcntl.flock(self._lock_file, fcntl.LOCK_UN)
                self._lock_file.close()
                self._lock_file = None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(self, pearl: Pearl, content: str = "") -> None:
        """Persist a new pearl and its optional markdown body across all layers."""
        with _phase("validate", pearl.id):
            pearl.validate()
        with self._locked():
            with _phase("create", pearl.id):
                if self.index.get(pearl.id) is not None:
                    msg = "pearl already exists"
                    raise AlreadyExistsError(msg)
                if not pearl.content_path:
                    pearl.content_path = ContentStore.path_for(pearl.namespace, pearl.name)

            previous: bytes | None = None
            wrote = False
            with _phase("write content", pearl.id):
                if content:
                    previous = self.content.read_bytes(pearl.content_path)
                    self.content.write(pearl.content_path, content)
                    wrote = True
                    pearl.content_hash = hash_text(content)

            try:
                with _phase("index insert", pearl.id):
                    self.index.insert(pearl)
            except BaseException:
                if wrote:
                    self._restore_content(pearl.content_path, previous)
                raise

            with _phase("log append", pearl.id):
                self.log.append(pearl)

            self._refresh_vector(pearl, content)
        logger.info("created %s", pearl.id)

    def _restore_content(self, rel_path: str, previous: bytes | None) -> None:
        try:
            if previous is None:
                self.content.delete(rel_path)
            else:
                self.content.write_bytes(rel_path, previous)
        except OSError as exc:
            logger.error("rollback of %s failed: %s", rel_path, exc)

    def update(self, pearl: Pearl, content: str | None = None) -> None:
        """Rewrite a pearl's metadata, and its body when content is not None.

        updated_at is left to the caller. The vector is regenerated only
        when content is given.
        """
        with _phase("validate", pearl.id):
            pearl.validate()
        with self._locked():
            with _phase("update", pearl.id):
                if content is not None:
                    if not pearl.content_path:
                        pearl.content_path = ContentStore.path_for(pearl.namespace, pearl.name)
                    self.content.write(pearl.content_path, content)
                    pearl.content_hash = hash_text(content)
                self.index.update(pearl)
            with _phase("log rewrite", pearl.id):
                self.log.write_all(self.index.all())
            if content is not None:
                self._refresh_vector(pearl, content)
        logger.info("updated %s", pearl.id)

    def delete(self, pearl_id: str) -> None:
        """Hard-delete a pearl from every layer."""
        with self._locked():
            with _phase("delete", pearl_id):
                pearl = self.index.get(pearl_id)
                if pearl is None:
                    msg = "pearl not found"
                    raise NotFoundError(msg)
                self.index.delete(pearl_id)
            if pearl.content_path:
                try:
                    self.content.delete(pearl.content_path)
                except OSError as exc:
                    logger.warning("delete %s: content file %s: %s", pearl_id, pearl.content_path, exc)
            with _phase("log rewrite", pearl_id):
                self.log.write_all(self.index.all())
        logger.info("deleted %s", pearl_id)

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    def get(self, pearl_id: str) -> Pearl | None:
        with _phase("get", pearl_id):
            return self.index.get(pearl_id)

    def get_content(self, pearl: Pearl) -> str:
        """The pearl's markdown body. NotFoundError if it has none on disk."""
        if not pearl.content_path:
            msg = f"get content {pearl.id}: pearl has no content path"
            raise NotFoundError(msg)
        with _phase("get content", pearl.id):
            return self.content.read(pearl.content_path)

    def list(self, opts: ListOptions | None = None) -> list[Pearl]:
        with _phase("list"):
            return self.index.list(opts)

    def all(self) -> list[Pearl]:
        return self.list()

    def count(self) -> int:
        with _phase("count"):
            return self.index.count()

    def search(self, query: str, limit: int = 50) -> list[Pearl]:
        with _phase("search"):
            return self.index.search(query, limit)

    def find_by_glob(self, path: str) -> list[Pearl]:
        with _phase("find by glob"):
            return self.index.find_by_glob(path)

    def find_by_scope(self, scope: str) -> list[Pearl]:
        with _phase("find by scope"):
            return self.index.find_by_scope(scope)

    def find_referencing(self, pearl_id: str) -> list[Pearl]:
        with _phase("find referencing", pearl_id):
            return self.index.find_referencing(pearl_id)

    def required_context(self) -> list[Pearl]:
        """Required pearls, highest priority first. Archived ones are skipped."""
        return [p for p in self.list(ListOptions(required=True)) if p.status != Status.ARCHIVED]

    # ------------------------------------------------------------------
    # Sync / repair
    # ------------------------------------------------------------------

    def sync_from_log(self) -> int:
        """Rebuild the index from pearls.jsonl. The log wins every conflict."""
        with self._locked(), _phase("sync from log"):
            pearls = self.log.read_all()
            n = self.index.replace_all(pearls)
        logger.info("indexed %d pearls from %s", n, self.log.path)
        return n

    def sync_to_log(self) -> int:
        """Rewrite pearls.jsonl from the index."""
        with self._locked(), _phase("sync to log"):
            pearls = self.index.all()
            self.log.write_all(pearls)
        logger.info("wrote %d pearls to %s", len(pearls), self.log.path)
        return len(pearls)

    def refresh_content_hashes(self) -> int:
        """Recompute content hashes from disk; returns how many changed."""
        updated = 0
        with self._locked():
            for pearl in self.all():
                if not pearl.content_path:
                    continue
                try:
                    digest = self.content.hash(pearl.content_path)
                except NotFoundError:
                    continue
                if digest != pearl.content_hash:
                    pearl.content_hash = digest
                    with _phase("refresh hash", pearl.id):
                        self.index.update(pearl)
                    updated += 1
            if updated:
                self.sync_to_log()
        logger.info("refreshed %d content hashes", updated)
        return updated

    # ------------------------------------------------------------------
    # Vectors
    # ------------------------------------------------------------------

    def _refresh_vector(self, pearl: Pearl, content: str) -> None:
        if self.embedder is None:
            return
        text = embed_text(pearl, content)
        if not text:
            return
        try:
            vector = self.embedder.embed(text)
            self.index.replace_vector(pearl.id, vector)
        except (EmbedError, ValidationError, OSError, sqlite3.Error) as exc:
            logger.warning("embedding %s failed: %s", pearl.id, exc, exc_info=logger.isEnabledFor(logging.DEBUG))

    def search_semantic(self, query: str, limit: int = 10) -> list[tuple[Pearl, float]]:
        """Nearest pearls to query by L2 distance, closest first."""
        if self.embedder is None:
            msg = "vector search is not enabled (set [vector_search] enabled = true)"
            raise EmbedError(msg)
        vector = self.embedder.embed_query(query)
        with _phase("semantic search"):
            hits = self.index.search_nearest(vector, limit)
            results = []
            for pearl_id, distance in hits:
                pearl = self.index.get(pearl_id)
                if pearl is not None:
                    results.append((pearl, distance))
        return results

    def rebuild_embeddings(self) -> tuple[int, int]:
        """Drop every vector and re-embed all pearls. Returns (indexed, failed)."""
        if self.embedder is None:
            msg = "vector search is not enabled (set [vector_search] enabled = true)"
            raise EmbedError(msg)
        indexed = failed = 0
        with self._locked():
            with _phase("clear vectors"):
                self.index.clear_vectors()
            for pearl in self.all():
                try:
                    body = self.get_content(pearl)
                except NotFoundError:
                    body = ""
                text = embed_text(pearl, body)
                if not text:
                    continue
                try:
                    self.index.insert_vector(pearl.id, self.embedder.embed(text))
                    indexed += 1
                except (EmbedError, ValidationError, OSError, sqlite3.Error) as exc:
                    logger.warning("embedding %s failed: %s", pearl.id, exc)
                    failed += 1
        logger.info("embedded %d pearls (%d failed)", indexed, failed)
        return indexed, failed

    def embedding_count(self) -> int:
        with _phase("embedding count"):
            return self.index.vector_count()
