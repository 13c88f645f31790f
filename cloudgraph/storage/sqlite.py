"""SQLite-backed graph storage.

Schema:
- nodes: one row per resource, keyed by the deterministic node id.
- edges: one row per dedup id, cascading on node deletion.
- changes: append-only ledger; `seq` preserves append order.
- groups_ / group_members: logical groupings, cascading on either side.
- sync_records: one row per discovery cycle, overwritten as it progresses.
"""

import contextlib
import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Iterator

from ..schema.clock import Clock, ensure_aware, next_after
from ..schema.models import (
    ChangeFilter,
    EdgeFilter,
    GraphChange,
    GraphEdge,
    GraphEdgeInput,
    GraphGroup,
    GraphNode,
    GraphNodeInput,
    GraphStats,
    NodeFilter,
    SyncRecord,
)
from ..schema.types import GroupType, NodeStatus, RelationshipType, TraversalDirection
from .base import (
    EdgeUpsertResult,
    GraphStorage,
    NodeUpsertResult,
    disappearance_candidates,
    merge_edge,
    merge_node,
)
from .errors import GroupNotFoundError, NodeNotFoundError, ReadOnlyStorageError, StorageError

_SCHEMA = """
CREATE TABLE IF NOT EXISTS nodes (
  id             TEXT PRIMARY KEY,
  provider       TEXT NOT NULL,
  resource_type  TEXT NOT NULL,
  native_id      TEXT NOT NULL,
  name           TEXT NOT NULL,
  region         TEXT NOT NULL DEFAULT '',
  account        TEXT NOT NULL DEFAULT '',
  status         TEXT NOT NULL DEFAULT 'unknown',
  tags           TEXT NOT NULL DEFAULT '{}',
  metadata       TEXT NOT NULL DEFAULT '{}',
  cost_monthly   REAL,
  owner          TEXT,
  created_at     TEXT,
  discovered_at  TEXT NOT NULL,
  updated_at     TEXT NOT NULL,
  last_seen_at   TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_nodes_provider ON nodes(provider);
CREATE INDEX IF NOT EXISTS idx_nodes_resource_type ON nodes(resource_type);
CREATE INDEX IF NOT EXISTS idx_nodes_native_id ON nodes(provider, native_id);
CREATE INDEX IF NOT EXISTS idx_nodes_last_seen ON nodes(last_seen_at);

CREATE TABLE IF NOT EXISTS edges (
  id                 TEXT PRIMARY KEY,
  source_node_id     TEXT NOT NULL,
  target_node_id     TEXT NOT NULL,
  relationship_type  TEXT NOT NULL,
  confidence         REAL NOT NULL DEFAULT 1.0,
  discovered_via     TEXT NOT NULL DEFAULT 'config-scan',
  metadata           TEXT NOT NULL DEFAULT '{}',
  created_at         TEXT NOT NULL,
  last_seen_at       TEXT NOT NULL,
  FOREIGN KEY (source_node_id) REFERENCES nodes(id) ON DELETE CASCADE,
  FOREIGN KEY (target_node_id) REFERENCES nodes(id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_edges_source ON edges(source_node_id, relationship_type);
CREATE INDEX IF NOT EXISTS idx_edges_target ON edges(target_node_id, relationship_type);
CREATE INDEX IF NOT EXISTS idx_edges_last_seen ON edges(last_seen_at);

CREATE TABLE IF NOT EXISTS changes (
  seq             INTEGER PRIMARY KEY AUTOINCREMENT,
  id              TEXT NOT NULL UNIQUE,
  target_id       TEXT NOT NULL,
  change_type     TEXT NOT NULL,
  field           TEXT,
  previous_value  TEXT,
  new_value       TEXT,
  detected_at     TEXT NOT NULL,
  detected_via    TEXT NOT NULL DEFAULT 'sync',
  correlation_id  TEXT,
  metadata        TEXT NOT NULL DEFAULT '{}'
);
CREATE INDEX IF NOT EXISTS idx_changes_target ON changes(target_id, seq);
CREATE INDEX IF NOT EXISTS idx_changes_type ON changes(change_type);
CREATE INDEX IF NOT EXISTS idx_changes_detected_at ON changes(detected_at);
CREATE INDEX IF NOT EXISTS idx_changes_correlation ON changes(correlation_id);

CREATE TABLE IF NOT EXISTS groups_ (
  id            TEXT PRIMARY KEY,
  name          TEXT NOT NULL,
  group_type    TEXT NOT NULL,
  provider      TEXT,
  description   TEXT NOT NULL DEFAULT '',
  owner         TEXT,
  tags          TEXT NOT NULL DEFAULT '{}',
  cost_monthly  REAL,
  created_at    TEXT NOT NULL,
  updated_at    TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_groups_type ON groups_(group_type);

CREATE TABLE IF NOT EXISTS group_members (
  group_id  TEXT NOT NULL,
  node_id   TEXT NOT NULL,
  added_at  TEXT NOT NULL,
  PRIMARY KEY (group_id, node_id),
  FOREIGN KEY (group_id) REFERENCES groups_(id) ON DELETE CASCADE,
  FOREIGN KEY (node_id) REFERENCES nodes(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS sync_records (
  id                 TEXT PRIMARY KEY,
  provider           TEXT NOT NULL,
  status             TEXT NOT NULL,
  started_at         TEXT NOT NULL,
  completed_at       TEXT,
  nodes_discovered   INTEGER NOT NULL DEFAULT 0,
  nodes_created      INTEGER NOT NULL DEFAULT 0,
  nodes_updated      INTEGER NOT NULL DEFAULT 0,
  nodes_disappeared  INTEGER NOT NULL DEFAULT 0,
  nodes_deleted      INTEGER NOT NULL DEFAULT 0,
  edges_discovered   INTEGER NOT NULL DEFAULT 0,
  edges_created      INTEGER NOT NULL DEFAULT 0,
  edges_removed      INTEGER NOT NULL DEFAULT 0,
  changes_recorded   INTEGER NOT NULL DEFAULT 0,
  errors             TEXT NOT NULL DEFAULT '[]',
  duration_ms        INTEGER
);
CREATE INDEX IF NOT EXISTS idx_sync_provider ON sync_records(provider, started_at);
"""

_NODE_COLUMNS = (
    "id",
    "provider",
    "resource_type",
    "native_id",
    "name",
    "region",
    "account",
    "status",
    "tags",
    "metadata",
    "cost_monthly",
    "owner",
    "created_at",
    "discovered_at",
    "updated_at",
    "last_seen_at",
)

_EDGE_COLUMNS = (
    "id",
    "source_node_id",
    "target_node_id",
    "relationship_type",
    "confidence",
    "discovered_via",
    "metadata",
    "created_at",
    "last_seen_at",
)

_SYNC_COUNT_COLUMNS = (
    "nodes_discovered",
    "nodes_created",
    "nodes_updated",
    "nodes_disappeared",
    "nodes_deleted",
    "edges_discovered",
    "edges_created",
    "edges_removed",
    "changes_recorded",
)


def _ts(value: datetime | None) -> str | None:
    """Fixed-width UTC text so string order equals time order."""
    if value is None:
        return None
    return ensure_aware(value).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)


def _upsert_sql(table: str, columns: tuple[str, ...], key: str = "id") -> str:
    placeholders = ", ".join("?" for _ in columns)
    updates = ", ".join(f"{col}=excluded.{col}" for col in columns if col != key)
    return (
        f"INSERT INTO {table}({', '.join(columns)}) VALUES({placeholders}) "
        f"ON CONFLICT({key}) DO UPDATE SET {updates};"
    )


class SQLiteGraphStorage(GraphStorage):
    """Durable storage on a single SQLite database file.

    One connection is shared across threads and serialized by a lock; every
    multi-row write runs in its own transaction.
    """

    def __init__(
        self,
        db_path: str | Path,
        clock: Clock | None = None,
        read_only: bool = False,
    ):
        super().__init__(clock)
        self.db_path = str(db_path)
        self.read_only = read_only
        self._lock = threading.RLock()
        self._conn: sqlite3.Connection | None = None

    # -- connection / schema ---------------------------------------------------

    def initialize(self) -> None:
        with self._lock:
            if self._conn is not None:
                return
            try:
                self._conn = self._connect()
                self._apply_pragmas()
                if not self.read_only:
                    self._conn.executescript(_SCHEMA)
            except sqlite3.Error as e:
                raise StorageError(f"Cannot open database {self.db_path}: {e}") from e

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _connect(self) -> sqlite3.Connection:
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        if self.read_only:
            uri = f"file:{Path(self.db_path).as_posix()}?mode=ro"
            conn = sqlite3.connect(uri, uri=True, check_same_thread=False)
        else:
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
        # Transactions are opened explicitly.
        conn.isolation_level = None
        conn.row_factory = sqlite3.Row
        return conn

    def _apply_pragmas(self) -> None:
        cur = self._conn.cursor()
        if not self.read_only and self.db_path != ":memory:":
            try:
                cur.execute("PRAGMA journal_mode=WAL;")
            except sqlite3.OperationalError:
                cur.execute("PRAGMA journal_mode=DELETE;")
        cur.execute("PRAGMA synchronous=NORMAL;")
        cur.execute("PRAGMA foreign_keys=ON;")

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self.initialize()
        return self._conn

    @contextlib.contextmanager
    def _read(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self.conn
            except sqlite3.Error as e:
                raise StorageError(f"Read failed: {e}") from e

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a unit of work under the lock; roll back on any failure."""
        if self.read_only:
            raise ReadOnlyStorageError(f"Database is read-only: {self.db_path}")
        with self._lock:
            conn = self.conn
            conn.execute("BEGIN;")
            try:
                yield conn
            except sqlite3.Error as e:
                conn.execute("ROLLBACK;")
                raise StorageError(f"Write failed: {e}") from e
            except BaseException:
                conn.execute("ROLLBACK;")
                raise
            else:
                conn.execute("COMMIT;")

    # -- row mapping -----------------------------------------------------------

    @staticmethod
    def _node_row(node: GraphNode) -> tuple:
        return (
            node.id,
            node.provider.value,
            node.resource_type.value,
            node.native_id,
            node.name,
            node.region,
            node.account,
            node.status.value,
            _dumps(node.tags),
            _dumps(node.metadata),
            node.cost_monthly,
            node.owner,
            _ts(node.created_at),
            _ts(node.discovered_at),
            _ts(node.updated_at),
            _ts(node.last_seen_at),
        )

    @staticmethod
    def _row_to_node(row: sqlite3.Row) -> GraphNode:
        node = GraphNode(
            provider=row["provider"],
            resource_type=row["resource_type"],
            native_id=row["native_id"],
            name=row["name"],
            region=row["region"],
            account=row["account"],
            status=row["status"],
            tags=json.loads(row["tags"]),
            metadata=json.loads(row["metadata"]),
            cost_monthly=row["cost_monthly"],
            owner=row["owner"],
            created_at=_parse_ts(row["created_at"]),
            discovered_at=_parse_ts(row["discovered_at"]),
            updated_at=_parse_ts(row["updated_at"]),
            last_seen_at=_parse_ts(row["last_seen_at"]),
        )
        # Keep the stored id so integrity checks can flag rows edited by hand.
        return node.model_copy(update={"id": row["id"]})

    @staticmethod
    def _edge_row(edge: GraphEdge) -> tuple:
        return (
            edge.id,
            edge.source_node_id,
            edge.target_node_id,
            edge.relationship_type.value,
            edge.confidence,
            edge.discovered_via.value,
            _dumps(edge.metadata),
            _ts(edge.created_at),
            _ts(edge.last_seen_at),
        )

    @staticmethod
    def _row_to_edge(row: sqlite3.Row) -> GraphEdge:
        return GraphEdge(
            id=row["id"],
            source_node_id=row["source_node_id"],
            target_node_id=row["target_node_id"],
            relationship_type=row["relationship_type"],
            confidence=row["confidence"],
            discovered_via=row["discovered_via"],
            metadata=json.loads(row["metadata"]),
            created_at=_parse_ts(row["created_at"]),
            last_seen_at=_parse_ts(row["last_seen_at"]),
        )

    @staticmethod
    def _row_to_change(row: sqlite3.Row) -> GraphChange:
        return GraphChange(
            id=row["id"],
            target_id=row["target_id"],
            change_type=row["change_type"],
            field=row["field"],
            previous_value=row["previous_value"],
            new_value=row["new_value"],
            detected_at=_parse_ts(row["detected_at"]),
            detected_via=row["detected_via"],
            correlation_id=row["correlation_id"],
            metadata=json.loads(row["metadata"]),
        )

    @staticmethod
    def _row_to_group(row: sqlite3.Row) -> GraphGroup:
        return GraphGroup(
            id=row["id"],
            name=row["name"],
            group_type=row["group_type"],
            provider=row["provider"],
            description=row["description"],
            owner=row["owner"],
            tags=json.loads(row["tags"]),
            cost_monthly=row["cost_monthly"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    @staticmethod
    def _row_to_sync_record(row: sqlite3.Row) -> SyncRecord:
        return SyncRecord(
            id=row["id"],
            provider=row["provider"],
            status=row["status"],
            started_at=_parse_ts(row["started_at"]),
            completed_at=_parse_ts(row["completed_at"]),
            errors=json.loads(row["errors"]),
            duration_ms=row["duration_ms"],
            **{col: row[col] for col in _SYNC_COUNT_COLUMNS},
        )

    # -- nodes -----------------------------------------------------------------

    def upsert_nodes(self, nodes: Iterable[GraphNodeInput]) -> list[NodeUpsertResult]:
        nodes = list(nodes)
        if not nodes:
            return []
        results = []
        sql = _upsert_sql("nodes", _NODE_COLUMNS)
        with self._transaction() as conn:
            for node in nodes:
                row = conn.execute("SELECT * FROM nodes WHERE id = ?;", (node.id,)).fetchone()
                existing = self._row_to_node(row) if row is not None else None
                result = merge_node(existing, node, self.now())
                conn.execute(sql, self._node_row(result.current))
                results.append(result)
        return results

    def get_node(self, node_id: str) -> GraphNode | None:
        with self._read() as conn:
            row = conn.execute("SELECT * FROM nodes WHERE id = ?;", (node_id,)).fetchone()
        return self._row_to_node(row) if row is not None else None

    def get_node_by_native_id(self, provider: str, native_id: str) -> GraphNode | None:
        provider = getattr(provider, "value", provider)
        with self._read() as conn:
            row = conn.execute(
                "SELECT * FROM nodes WHERE provider = ? AND native_id = ? LIMIT 1;",
                (provider, native_id),
            ).fetchone()
        return self._row_to_node(row) if row is not None else None

    def query_nodes(self, filter: NodeFilter | None = None) -> list[GraphNode]:
        clauses: list[str] = []
        params: list[Any] = []
        if filter is not None:
            for column in ("region", "account", "owner"):
                value = getattr(filter, column)
                if value is not None:
                    clauses.append(f"{column} = ?")
                    params.append(value)
            if filter.provider is not None:
                clauses.append("provider = ?")
                params.append(filter.provider.value)
            for column, values in (
                ("resource_type", filter.resource_type),
                ("status", filter.status),
            ):
                if values:
                    clauses.append(f"{column} IN ({', '.join('?' for _ in values)})")
                    params.extend(v.value for v in values)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._read() as conn:
            rows = conn.execute(f"SELECT * FROM nodes{where} ORDER BY id;", params).fetchall()
        nodes = [self._row_to_node(row) for row in rows]
        # Tags, name pattern and cost range are checked in Python.
        if filter is not None:
            nodes = [node for node in nodes if filter.matches(node)]
        return nodes

    def delete_node(self, node_id: str) -> bool:
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM nodes WHERE id = ?;", (node_id,))
            return cur.rowcount > 0

    def mark_nodes_disappeared(
        self, older_than: datetime, provider: str | None = None
    ) -> list[str]:
        provider = getattr(provider, "value", provider)
        clauses = ["status != ?", "last_seen_at < ?"]
        params: list[Any] = [NodeStatus.DISAPPEARED.value, _ts(older_than)]
        if provider is not None:
            clauses.append("provider = ?")
            params.append(provider)
        with self._transaction() as conn:
            rows = conn.execute(
                f"SELECT * FROM nodes WHERE {' AND '.join(clauses)} ORDER BY id;", params
            ).fetchall()
            candidates = disappearance_candidates(
                (self._row_to_node(row) for row in rows), older_than, provider
            )
            now = self.now()
            for node in candidates:
                conn.execute(
                    "UPDATE nodes SET status = ?, updated_at = ? WHERE id = ?;",
                    (
                        NodeStatus.DISAPPEARED.value,
                        _ts(next_after(now, node.updated_at)),
                        node.id,
                    ),
                )
        return [node.id for node in candidates]

    # -- edges -----------------------------------------------------------------

    def upsert_edges(self, edges: Iterable[GraphEdgeInput]) -> list[EdgeUpsertResult]:
        edges = list(edges)
        if not edges:
            return []
        results = []
        sql = _upsert_sql("edges", _EDGE_COLUMNS)
        with self._transaction() as conn:
            for edge in edges:
                for endpoint in (edge.source_node_id, edge.target_node_id):
                    found = conn.execute(
                        "SELECT 1 FROM nodes WHERE id = ?;", (endpoint,)
                    ).fetchone()
                    if found is None:
                        raise NodeNotFoundError(
                            endpoint, f"Edge {edge.id} references missing node {endpoint}"
                        )
                row = conn.execute("SELECT * FROM edges WHERE id = ?;", (edge.id,)).fetchone()
                existing = self._row_to_edge(row) if row is not None else None
                result = merge_edge(existing, edge, self.now())
                conn.execute(sql, self._edge_row(result.edge))
                results.append(result)
        return results

    def get_edge(self, edge_id: str) -> GraphEdge | None:
        with self._read() as conn:
            row = conn.execute("SELECT * FROM edges WHERE id = ?;", (edge_id,)).fetchone()
        return self._row_to_edge(row) if row is not None else None

    def get_edges_for_node(
        self,
        node_id: str,
        direction: TraversalDirection = TraversalDirection.BOTH,
        relationship_type: RelationshipType | None = None,
    ) -> list[GraphEdge]:
        direction = TraversalDirection(direction)
        if direction == TraversalDirection.DOWNSTREAM:
            clause, params = "source_node_id = ?", [node_id]
        elif direction == TraversalDirection.UPSTREAM:
            clause, params = "target_node_id = ?", [node_id]
        else:
            clause, params = "(source_node_id = ? OR target_node_id = ?)", [node_id, node_id]
        if relationship_type is not None:
            clause += " AND relationship_type = ?"
            params.append(RelationshipType(relationship_type).value)
        with self._read() as conn:
            rows = conn.execute(
                f"SELECT * FROM edges WHERE {clause} ORDER BY id;", params
            ).fetchall()
        return [self._row_to_edge(row) for row in rows]

    def query_edges(self, filter: EdgeFilter | None = None) -> list[GraphEdge]:
        clauses: list[str] = []
        params: list[Any] = []
        if filter is not None:
            for column in ("source_node_id", "target_node_id"):
                value = getattr(filter, column)
                if value is not None:
                    clauses.append(f"{column} = ?")
                    params.append(value)
            if filter.relationship_type:
                marks = ", ".join("?" for _ in filter.relationship_type)
                clauses.append(f"relationship_type IN ({marks})")
                params.extend(rel.value for rel in filter.relationship_type)
            if filter.min_confidence is not None:
                clauses.append("confidence >= ?")
                params.append(filter.min_confidence)
            if filter.discovered_via is not None:
                clauses.append("discovered_via = ?")
                params.append(filter.discovered_via.value)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._read() as conn:
            rows = conn.execute(f"SELECT * FROM edges{where} ORDER BY id;", params).fetchall()
        return [self._row_to_edge(row) for row in rows]

    def delete_edge(self, edge_id: str) -> bool:
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM edges WHERE id = ?;", (edge_id,))
            return cur.rowcount > 0

    def remove_stale_edges(self, older_than: datetime) -> list[GraphEdge]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM edges WHERE last_seen_at < ? ORDER BY id;", (_ts(older_than),)
            ).fetchall()
            conn.execute("DELETE FROM edges WHERE last_seen_at < ?;", (_ts(older_than),))
        return [self._row_to_edge(row) for row in rows]

    # -- change ledger ---------------------------------------------------------

    def append_changes(self, changes: Iterable[GraphChange]) -> None:
        rows = [
            (
                change.id,
                change.target_id,
                change.change_type.value,
                change.field,
                change.previous_value,
                change.new_value,
                _ts(change.detected_at),
                change.detected_via.value,
                change.correlation_id,
                _dumps(change.metadata),
            )
            for change in changes
        ]
        if not rows:
            return
        with self._transaction() as conn:
            conn.executemany(
                """
                INSERT INTO changes(
                  id, target_id, change_type, field, previous_value, new_value,
                  detected_at, detected_via, correlation_id, metadata
                )
                VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                rows,
            )

    def get_changes(self, filter: ChangeFilter | None = None) -> list[GraphChange]:
        clauses: list[str] = []
        params: list[Any] = []
        if filter is not None:
            for column in ("target_id", "correlation_id"):
                value = getattr(filter, column)
                if value is not None:
                    clauses.append(f"{column} = ?")
                    params.append(value)
            if filter.change_type:
                marks = ", ".join("?" for _ in filter.change_type)
                clauses.append(f"change_type IN ({marks})")
                params.extend(ct.value for ct in filter.change_type)
            if filter.since is not None:
                clauses.append("detected_at >= ?")
                params.append(_ts(filter.since))
            if filter.until is not None:
                clauses.append("detected_at <= ?")
                params.append(_ts(filter.until))
            if filter.detected_via is not None:
                clauses.append("detected_via = ?")
                params.append(filter.detected_via.value)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._read() as conn:
            rows = conn.execute(f"SELECT * FROM changes{where} ORDER BY seq;", params).fetchall()
        return [self._row_to_change(row) for row in rows]

    def get_node_timeline(self, node_id: str, limit: int = 50) -> list[GraphChange]:
        if limit <= 0:
            return []
        with self._read() as conn:
            rows = conn.execute(
                """
                SELECT * FROM (
                  SELECT * FROM changes WHERE target_id = ? ORDER BY seq DESC LIMIT ?
                ) ORDER BY seq;
                """,
                (node_id, limit),
            ).fetchall()
        return [self._row_to_change(row) for row in rows]

    # -- stats -----------------------------------------------------------------

    def get_stats(self) -> GraphStats:
        with self._read() as conn:
            by_provider = conn.execute(
                "SELECT provider, COUNT(*) AS n FROM nodes GROUP BY provider;"
            ).fetchall()
            by_type = conn.execute(
                "SELECT resource_type, COUNT(*) AS n FROM nodes GROUP BY resource_type;"
            ).fetchall()
            by_rel = conn.execute(
                "SELECT relationship_type, COUNT(*) AS n FROM edges GROUP BY relationship_type;"
            ).fetchall()
            totals = conn.execute(
                """
                SELECT
                  (SELECT COUNT(*) FROM nodes) AS node_count,
                  (SELECT COUNT(*) FROM edges) AS edge_count,
                  (SELECT COUNT(*) FROM changes) AS change_count,
                  (SELECT COUNT(*) FROM groups_) AS group_count,
                  (SELECT COALESCE(SUM(cost_monthly), 0) FROM nodes) AS cost,
                  (SELECT MAX(completed_at) FROM sync_records) AS last_sync,
                  (SELECT MIN(detected_at) FROM changes) AS oldest,
                  (SELECT MAX(detected_at) FROM changes) AS newest;
                """
            ).fetchone()

        return GraphStats(
            total_nodes=totals["node_count"],
            total_edges=totals["edge_count"],
            total_changes=totals["change_count"],
            total_groups=totals["group_count"],
            nodes_by_provider={row[0]: row["n"] for row in by_provider},
            nodes_by_resource_type={row[0]: row["n"] for row in by_type},
            edges_by_relationship_type={row[0]: row["n"] for row in by_rel},
            total_cost_monthly=float(totals["cost"]),
            last_sync_at=_parse_ts(totals["last_sync"]),
            oldest_change=_parse_ts(totals["oldest"]),
            newest_change=_parse_ts(totals["newest"]),
        )

    # -- groups ----------------------------------------------------------------

    def upsert_group(self, group: GraphGroup) -> GraphGroup:
        with self._transaction() as conn:
            now = self.now()
            row = conn.execute(
                "SELECT created_at FROM groups_ WHERE id = ?;", (group.id,)
            ).fetchone()
            created_at = _parse_ts(row["created_at"]) if row else (group.created_at or now)
            stored = group.model_copy(update={"created_at": created_at, "updated_at": now})
            conn.execute(
                _upsert_sql(
                    "groups_",
                    (
                        "id",
                        "name",
                        "group_type",
                        "provider",
                        "description",
                        "owner",
                        "tags",
                        "cost_monthly",
                        "created_at",
                        "updated_at",
                    ),
                ),
                (
                    stored.id,
                    stored.name,
                    stored.group_type.value,
                    stored.provider.value if stored.provider else None,
                    stored.description,
                    stored.owner,
                    _dumps(stored.tags),
                    stored.cost_monthly,
                    _ts(stored.created_at),
                    _ts(stored.updated_at),
                ),
            )
        return stored

    def get_group(self, group_id: str) -> GraphGroup | None:
        with self._read() as conn:
            row = conn.execute("SELECT * FROM groups_ WHERE id = ?;", (group_id,)).fetchone()
        return self._row_to_group(row) if row is not None else None

    def list_groups(self, group_type: GroupType | None = None) -> list[GraphGroup]:
        with self._read() as conn:
            if group_type is None:
                rows = conn.execute("SELECT * FROM groups_ ORDER BY id;").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM groups_ WHERE group_type = ? ORDER BY id;",
                    (GroupType(group_type).value,),
                ).fetchall()
        return [self._row_to_group(row) for row in rows]

    def delete_group(self, group_id: str) -> bool:
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM groups_ WHERE id = ?;", (group_id,))
            return cur.rowcount > 0

    def add_group_member(self, group_id: str, node_id: str) -> None:
        with self._transaction() as conn:
            if conn.execute("SELECT 1 FROM groups_ WHERE id = ?;", (group_id,)).fetchone() is None:
                raise GroupNotFoundError(group_id)
            if conn.execute("SELECT 1 FROM nodes WHERE id = ?;", (node_id,)).fetchone() is None:
                raise NodeNotFoundError(node_id)
            conn.execute(
                """
                INSERT INTO group_members(group_id, node_id, added_at) VALUES(?, ?, ?)
                ON CONFLICT(group_id, node_id) DO NOTHING;
                """,
                (group_id, node_id, _ts(self.now())),
            )

    def remove_group_member(self, group_id: str, node_id: str) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(
                "DELETE FROM group_members WHERE group_id = ? AND node_id = ?;",
                (group_id, node_id),
            )
            return cur.rowcount > 0

    def get_group_members(self, group_id: str) -> list[GraphNode]:
        with self._read() as conn:
            rows = conn.execute(
                """
                SELECT n.* FROM nodes n
                JOIN group_members gm ON gm.node_id = n.id
                WHERE gm.group_id = ?
                ORDER BY n.id;
                """,
                (group_id,),
            ).fetchall()
        return [self._row_to_node(row) for row in rows]

    def get_node_groups(self, node_id: str) -> list[GraphGroup]:
        with self._read() as conn:
            rows = conn.execute(
                """
                SELECT g.* FROM groups_ g
                JOIN group_members gm ON gm.group_id = g.id
                WHERE gm.node_id = ?
                ORDER BY g.id;
                """,
                (node_id,),
            ).fetchall()
        return [self._row_to_group(row) for row in rows]

    # -- sync records ----------------------------------------------------------

    def save_sync_record(self, record: SyncRecord) -> None:
        columns = (
            "id",
            "provider",
            "status",
            "started_at",
            "completed_at",
            *_SYNC_COUNT_COLUMNS,
            "errors",
            "duration_ms",
        )
        row = (
            record.id,
            record.provider,
            record.status.value,
            _ts(record.started_at),
            _ts(record.completed_at),
            *(getattr(record, col) for col in _SYNC_COUNT_COLUMNS),
            _dumps(record.errors),
            record.duration_ms,
        )
        with self._transaction() as conn:
            conn.execute(_upsert_sql("sync_records", columns), row)

    def get_last_sync_record(self, provider: str | None = None) -> SyncRecord | None:
        with self._read() as conn:
            if provider is None:
                row = conn.execute(
                    "SELECT * FROM sync_records ORDER BY started_at DESC, rowid DESC LIMIT 1;"
                ).fetchone()
            else:
                row = conn.execute(
                    """
                    SELECT * FROM sync_records WHERE provider = ?
                    ORDER BY started_at DESC, rowid DESC LIMIT 1;
                    """,
                    (getattr(provider, "value", provider),),
                ).fetchone()
        return self._row_to_sync_record(row) if row is not None else None

    def list_sync_records(self, limit: int | None = None) -> list[SyncRecord]:
        sql = "SELECT * FROM sync_records ORDER BY started_at DESC, rowid DESC"
        params: tuple = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (limit,)
        with self._read() as conn:
            rows = conn.execute(sql + ";", params).fetchall()
        return [self._row_to_sync_record(row) for row in rows]
