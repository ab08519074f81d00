"""Persistence of task states, mesh results and texture records."""

from __future__ import annotations

import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from rodin_worker.contracts import MeshRecord, TaskState, TextureRecord
from rodin_worker.errors import RecordNotFoundError, ResultStoreError

logger = logging.getLogger(__name__)


class ResultStore(ABC):
    """Writes the fields the worker owns on a task's mesh record."""

    @abstractmethod
    def update_state(self, task_id: str, state: TaskState | str) -> None:
        ...

    @abstractmethod
    def update_result(self, task_id: str, *, model_url: str, preview_url: str,
                      state: TaskState | str) -> MeshRecord:
        """Store the final asset URLs and return the updated record."""
        ...

    @abstractmethod
    def add_texture(self, mesh_id: int, *, type: str, url: str) -> TextureRecord:
        ...


class SQLiteResultStore(ResultStore):
    """Result store backed by a local SQLite file.

    Mesh rows are looked up by ``task_id_refine``; updating a task that has
    no row raises ``RecordNotFoundError``.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self._lock = threading.Lock()

    def initialize(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS meshes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id_refine TEXT NOT NULL UNIQUE,
                    state TEXT,
                    model_glb_refine TEXT,
                    refine_image TEXT,
                    updated_at TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS textures (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    mesh_id INTEGER NOT NULL REFERENCES meshes(id),
                    type TEXT NOT NULL,
                    url TEXT NOT NULL
                );
                CREATE UNIQUE INDEX IF NOT EXISTS textures_mesh_url
                    ON textures (mesh_id, url);
                """
            )

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def ensure_mesh(self, task_id: str) -> MeshRecord:
        with self._lock, self._connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO meshes (task_id_refine, updated_at) VALUES (?, ?)",
                (task_id, _timestamp()),
            )
            row = self._fetch_mesh(conn, task_id)
        return _mesh_record(row)

    def get_mesh(self, task_id: str) -> Optional[MeshRecord]:
        with self._connect() as conn:
            row = self._fetch_mesh(conn, task_id)
        return _mesh_record(row) if row else None

    def list_textures(self, mesh_id: int) -> List[TextureRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM textures WHERE mesh_id=? ORDER BY id", (mesh_id,)
            ).fetchall()
        return [
            TextureRecord(id=row["id"], mesh_id=row["mesh_id"], type=row["type"], url=row["url"])
            for row in rows
        ]

    def update_state(self, task_id, state):
        with self._lock, self._connect() as conn:
            cur = conn.execute(
                "UPDATE meshes SET state=?, updated_at=? WHERE task_id_refine=?",
                (_state_value(state), _timestamp(), task_id),
            )
            if cur.rowcount == 0:
                raise RecordNotFoundError(f"No mesh record for task {task_id}")
        logger.info("Task %s state -> %s", task_id, _state_value(state))

    def update_result(self, task_id, *, model_url, preview_url, state):
        with self._lock, self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE meshes
                SET model_glb_refine=?, refine_image=?, state=?, updated_at=?
                WHERE task_id_refine=?
                """,
                (model_url, preview_url, _state_value(state), _timestamp(), task_id),
            )
            if cur.rowcount == 0:
                raise RecordNotFoundError(f"No mesh record for task {task_id}")
            row = self._fetch_mesh(conn, task_id)
        return _mesh_record(row)

    def add_texture(self, mesh_id, *, type, url):
        """Record a texture; a URL already stored for the mesh is returned as is."""
        try:
            with self._lock, self._connect() as conn:
                conn.execute(
                    "INSERT OR IGNORE INTO textures (mesh_id, type, url) VALUES (?, ?, ?)",
                    (mesh_id, type, url),
                )
                row = conn.execute(
                    "SELECT * FROM textures WHERE mesh_id=? AND url=?", (mesh_id, url)
                ).fetchone()
        except sqlite3.Error as e:
            raise ResultStoreError(f"Adding texture for mesh {mesh_id} failed: {e}") from e
        return TextureRecord(id=row["id"], mesh_id=row["mesh_id"], type=row["type"], url=row["url"])

    @staticmethod
    def _fetch_mesh(conn: sqlite3.Connection, task_id: str):
        return conn.execute(
            "SELECT * FROM meshes WHERE task_id_refine=?", (task_id,)
        ).fetchone()


def _mesh_record(row) -> MeshRecord:
    return MeshRecord(
        id=row["id"],
        task_id=row["task_id_refine"],
        state=row["state"],
        model_url=row["model_glb_refine"],
        preview_url=row["refine_image"],
    )


def _state_value(state) -> str:
    return state.value if isinstance(state, TaskState) else str(state)


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")
