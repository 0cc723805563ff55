from __future__ import annotations

import json
import logging
import os
import sqlite3
from typing import Any, TypeVar, cast

from .models import ObjectRef, Resource, parse_object
from .settings import settings
from .store import AlreadyExists, Conflict, NotFound, admit_create, admit_update, is_released, owned_by, utc_now

R = TypeVar("R", bound=Resource)


def _resolve_db_path(path: str | None = None) -> str:
    """Return a file path usable by sqlite.

    A bind-mounted path that did not exist on the host shows up as a
    directory; in that case the db file is placed inside it.
    """
    p = os.path.abspath(path or settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "lro.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect(path: str | None = None) -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(path), check_same_thread=False, timeout=10)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(path: str | None = None) -> None:
    """Create tables if they do not exist."""
    with connect(path) as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS objects (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              kind TEXT NOT NULL,
              namespace TEXT NOT NULL,
              name TEXT NOT NULL,
              uid TEXT NOT NULL,
              resource_version INTEGER NOT NULL,
              body TEXT NOT NULL,
              created_at TEXT NOT NULL,
              UNIQUE(kind, namespace, name)
            );

            CREATE TABLE IF NOT EXISTS revision (
              id INTEGER PRIMARY KEY CHECK (id = 1),
              value INTEGER NOT NULL
            );
            INSERT OR IGNORE INTO revision (id, value) VALUES (1, 0);

            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              kind TEXT,
              namespace TEXT,
              name TEXT,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            CREATE INDEX IF NOT EXISTS idx_objects_kind ON objects(kind, namespace);
            """
        )


def log_event(
    level: str,
    message: str,
    kind: str | None = None,
    namespace: str | None = None,
    name: str | None = None,
    path: str | None = None,
) -> None:
    with connect(path) as conn:
        conn.execute(
            "INSERT INTO events (ts, level, kind, namespace, name, message) VALUES (?, ?, ?, ?, ?, ?)",
            (utc_now().isoformat(), level.upper(), kind, namespace, name, message),
        )


def latest_events(limit: int = 100, path: str | None = None) -> list[dict[str, Any]]:
    with connect(path) as conn:
        rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]


class EventLogHandler(logging.Handler):
    """Persist log records to the events table.

    Records may carry ``kind``, ``namespace`` and ``resource`` (the object name)
    through ``extra``.
    """

    def __init__(self, path: str | None = None, level: int = logging.INFO):
        super().__init__(level)
        self.path = path

    def emit(self, record: logging.LogRecord) -> None:
        try:
            log_event(
                record.levelname,
                record.getMessage(),
                kind=getattr(record, "kind", None),
                namespace=getattr(record, "namespace", None),
                name=getattr(record, "resource", None),
                path=self.path,
            )
        except Exception:
            self.handleError(record)


def configure_logging(level: str | None = None, path: str | None = None) -> None:
    """Log ``lro.*`` to stderr and persist INFO and above to the events table."""
    logger = logging.getLogger("lro")
    logger.setLevel((level or settings.log_level).upper())
    for h in [h for h in logger.handlers if isinstance(h, EventLogHandler)]:
        logger.removeHandler(h)
    logger.addHandler(EventLogHandler(path))
    if not any(type(h) is logging.StreamHandler for h in logger.handlers):
        stream = logging.StreamHandler()
        stream.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        logger.addHandler(stream)


def _next_rv(conn: sqlite3.Connection) -> int:
    conn.execute("UPDATE revision SET value = value + 1 WHERE id = 1")
    return int(conn.execute("SELECT value FROM revision WHERE id = 1").fetchone()[0])


class SqliteStore:
    """Object store persisted in sqlite; same contract as MemoryStore."""

    def __init__(self, path: str | None = None):
        self.path = path
        init_db(path)

    def get(self, kind: type[R], ref: ObjectRef) -> R:
        with connect(self.path) as conn:
            row = conn.execute(
                "SELECT body FROM objects WHERE kind=? AND namespace=? AND name=?",
                (kind.KIND, ref.namespace, ref.name),
            ).fetchone()
        if row is None:
            raise NotFound(kind.KIND, ref)
        return cast(R, parse_object(json.loads(row["body"])))

    def create(self, obj: R) -> R:
        with connect(self.path) as conn:
            body = admit_create(obj, _next_rv(conn))
            meta = body["metadata"]
            try:
                conn.execute(
                    """
                    INSERT INTO objects (kind, namespace, name, uid, resource_version, body, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        obj.kind,
                        meta["namespace"],
                        meta["name"],
                        meta["uid"],
                        int(meta["resourceVersion"]),
                        json.dumps(body),
                        meta["creationTimestamp"],
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise AlreadyExists(obj.kind, obj.ref) from e
        return cast(R, parse_object(body))

    def update(self, obj: R) -> R:
        with connect(self.path) as conn:
            row = conn.execute(
                "SELECT body, resource_version FROM objects WHERE kind=? AND namespace=? AND name=?",
                (obj.kind, obj.metadata.namespace, obj.metadata.name),
            ).fetchone()
            if row is None:
                raise NotFound(obj.kind, obj.ref)
            body = admit_update(json.loads(row["body"]), obj, _next_rv(conn))
            if is_released(body):
                self._remove(conn, obj.kind, obj.ref, body)
                return cast(R, parse_object(body))
            cur = conn.execute(
                """
                UPDATE objects SET body=?, resource_version=?
                WHERE kind=? AND namespace=? AND name=? AND resource_version=?
                """,
                (
                    json.dumps(body),
                    int(body["metadata"]["resourceVersion"]),
                    obj.kind,
                    obj.metadata.namespace,
                    obj.metadata.name,
                    row["resource_version"],
                ),
            )
            if cur.rowcount == 0:
                raise Conflict(obj.kind, obj.ref, "object changed concurrently")
        return cast(R, parse_object(body))

    def delete(self, kind: type[Resource], ref: ObjectRef) -> None:
        with connect(self.path) as conn:
            row = conn.execute(
                "SELECT body FROM objects WHERE kind=? AND namespace=? AND name=?",
                (kind.KIND, ref.namespace, ref.name),
            ).fetchone()
            if row is None:
                raise NotFound(kind.KIND, ref)
            body = json.loads(row["body"])
            meta = body["metadata"]
            if meta.get("finalizers"):
                if not meta.get("deletionTimestamp"):
                    rv = _next_rv(conn)
                    meta["deletionTimestamp"] = utc_now().isoformat()
                    meta["resourceVersion"] = str(rv)
                    conn.execute(
                        "UPDATE objects SET body=?, resource_version=? WHERE kind=? AND namespace=? AND name=?",
                        (json.dumps(body), rv, kind.KIND, ref.namespace, ref.name),
                    )
                return
            self._remove(conn, kind.KIND, ref, body)

    def _remove(self, conn: sqlite3.Connection, kind: str, ref: ObjectRef, body: dict[str, Any]) -> None:
        conn.execute("DELETE FROM objects WHERE kind=? AND namespace=? AND name=?", (kind, ref.namespace, ref.name))
        uid = body["metadata"].get("uid")
        if not uid:
            return
        for row in conn.execute("SELECT kind, namespace, name, body FROM objects").fetchall():
            child = json.loads(row["body"])
            if owned_by(child, uid):
                self._remove(conn, row["kind"], ObjectRef(row["namespace"], row["name"]), child)

    def list(self, kind: type[R], namespace: str | None = None) -> list[R]:
        with connect(self.path) as conn:
            if namespace is None:
                rows = conn.execute(
                    "SELECT body FROM objects WHERE kind=? ORDER BY namespace, name", (kind.KIND,)
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT body FROM objects WHERE kind=? AND namespace=? ORDER BY name", (kind.KIND, namespace)
                ).fetchall()
        return [cast(R, parse_object(json.loads(r["body"]))) for r in rows]
