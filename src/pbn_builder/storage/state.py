import json
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path

from pbn_builder.errors import DuplicateNameError


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class StateDB:
    def __init__(self, db_path: str):
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._init_tables()

    def _init_tables(self):
        with self._lock:
            self.conn.executescript("""
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    username TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS projects (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL UNIQUE,
                    system_prompt TEXT NOT NULL,
                    user_prompt TEXT NOT NULL,
                    site_count INTEGER NOT NULL,
                    interval INTEGER NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    is_running INTEGER NOT NULL DEFAULT 0,
                    progress TEXT NOT NULL DEFAULT '[]',
                    created_at TEXT NOT NULL,
                    next_run_at TEXT
                );
                CREATE TABLE IF NOT EXISTS cleanup_tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    kind TEXT NOT NULL,
                    target TEXT NOT NULL,
                    owner TEXT NOT NULL DEFAULT '',
                    attempts INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT,
                    created_at TEXT NOT NULL,
                    UNIQUE (kind, target, owner)
                );
            """)
            self.conn.commit()

    @staticmethod
    def _project_row(row: sqlite3.Row | None) -> dict | None:
        if row is None:
            return None
        project = dict(row)
        project["is_running"] = bool(project["is_running"])
        project["progress"] = json.loads(project["progress"])
        return project

    # ---- users ----

    def create_user(self, username: str, password_hash: str) -> str:
        user_id = uuid.uuid4().hex
        with self._lock:
            try:
                self.conn.execute(
                    "INSERT INTO users (id, username, password_hash, created_at) VALUES (?, ?, ?, ?)",
                    (user_id, username, password_hash, _now()),
                )
            except sqlite3.IntegrityError as e:
                raise DuplicateNameError(f"User '{username}' already exists") from e
            self.conn.commit()
        return user_id

    def get_user(self, user_id: str) -> dict | None:
        with self._lock:
            row = self.conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            return dict(row) if row else None

    def get_user_by_name(self, username: str) -> dict | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM users WHERE username = ?", (username,)
            ).fetchone()
            return dict(row) if row else None

    def update_user_password(self, user_id: str, password_hash: str):
        with self._lock:
            self.conn.execute(
                "UPDATE users SET password_hash = ? WHERE id = ?", (password_hash, user_id)
            )
            self.conn.commit()

    def delete_user(self, user_id: str) -> bool:
        with self._lock:
            cur = self.conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
            self.conn.commit()
            return cur.rowcount > 0

    # ---- projects ----

    def create_project(
        self,
        name: str,
        system_prompt: str,
        user_prompt: str,
        site_count: int,
        interval: int,
    ) -> str:
        project_id = uuid.uuid4().hex
        with self._lock:
            try:
                self.conn.execute(
                    "INSERT INTO projects (id, name, system_prompt, user_prompt, site_count, interval, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (project_id, name, system_prompt, user_prompt, site_count, interval, _now()),
                )
            except sqlite3.IntegrityError as e:
                raise DuplicateNameError(f"Project '{name}' already exists") from e
            self.conn.commit()
        return project_id

    def get_project(self, project_id: str) -> dict | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM projects WHERE id = ?", (project_id,)
            ).fetchone()
            return self._project_row(row)

    def get_project_by_name(self, name: str) -> dict | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM projects WHERE name = ?", (name,)
            ).fetchone()
            return self._project_row(row)

    def list_projects(self) -> list[dict]:
        with self._lock:
            rows = self.conn.execute("SELECT * FROM projects ORDER BY created_at").fetchall()
            return [self._project_row(row) for row in rows]

    def update_project(
        self,
        project_id: str,
        name: str,
        system_prompt: str,
        user_prompt: str,
        site_count: int,
        interval: int,
    ):
        with self._lock:
            try:
                self.conn.execute(
                    "UPDATE projects SET name = ?, system_prompt = ?, user_prompt = ?, site_count = ?, interval = ? WHERE id = ?",
                    (name, system_prompt, user_prompt, site_count, interval, project_id),
                )
            except sqlite3.IntegrityError as e:
                raise DuplicateNameError(f"Project '{name}' already exists") from e
            self.conn.commit()

    def delete_project(self, project_id: str) -> bool:
        with self._lock:
            cur = self.conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
            self.conn.commit()
            return cur.rowcount > 0

    def set_project_state(
        self,
        project_id: str,
        status: str,
        is_running: bool,
        next_run_at: str | None = None,
    ):
        with self._lock:
            self.conn.execute(
                "UPDATE projects SET status = ?, is_running = ?, next_run_at = ? WHERE id = ?",
                (status, int(is_running), next_run_at, project_id),
            )
            self.conn.commit()

    def schedule_next_run(self, project_id: str, next_run_at: str):
        with self._lock:
            self.conn.execute(
                "UPDATE projects SET next_run_at = ? WHERE id = ?", (next_run_at, project_id)
            )
            self.conn.commit()

    def reset_progress(self, project_id: str):
        with self._lock:
            self.conn.execute("UPDATE projects SET progress = '[]' WHERE id = ?", (project_id,))
            self.conn.commit()

    def append_progress(self, project_id: str, entry: dict, only_running: bool = False) -> int | None:
        """附加一筆進度並回傳新的進度長度（讀取與寫入在同一把鎖內）。

        only_running 時，專案已停止（例如正在刪除）則不寫入並回傳 None。
        """
        with self._lock:
            row = self.conn.execute(
                "SELECT progress, is_running FROM projects WHERE id = ?", (project_id,)
            ).fetchone()
            if row is None:
                raise KeyError(project_id)
            if only_running and not row["is_running"]:
                return None
            progress = json.loads(row["progress"])
            progress.append(entry)
            self.conn.execute(
                "UPDATE projects SET progress = ? WHERE id = ?",
                (json.dumps(progress), project_id),
            )
            self.conn.commit()
            return len(progress)

    def begin_delete(self, project_id: str) -> dict | None:
        """標記為 deleting 並停止排程，回傳標記當下的專案內容。"""
        with self._lock:
            self.conn.execute(
                "UPDATE projects SET status = 'deleting', is_running = 0, next_run_at = NULL WHERE id = ?",
                (project_id,),
            )
            self.conn.commit()
            row = self.conn.execute(
                "SELECT * FROM projects WHERE id = ?", (project_id,)
            ).fetchone()
            return self._project_row(row)

    def due_projects(self, now: str) -> list[dict]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM projects WHERE is_running = 1 AND next_run_at IS NOT NULL AND next_run_at <= ?",
                (now,),
            ).fetchall()
            return [self._project_row(row) for row in rows]

    def running_projects(self) -> list[dict]:
        with self._lock:
            rows = self.conn.execute("SELECT * FROM projects WHERE is_running = 1").fetchall()
            return [self._project_row(row) for row in rows]

    # ---- cleanup tasks ----

    def add_cleanup_task(self, kind: str, target: str, owner: str, error: str):
        with self._lock:
            self.conn.execute(
                "INSERT INTO cleanup_tasks (kind, target, owner, last_error, created_at) VALUES (?, ?, ?, ?, ?) "
                "ON CONFLICT (kind, target, owner) DO UPDATE SET last_error = excluded.last_error",
                (kind, target, owner, error, _now()),
            )
            self.conn.commit()

    def pending_cleanup_tasks(self, max_attempts: int) -> list[dict]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM cleanup_tasks WHERE attempts < ? ORDER BY id", (max_attempts,)
            ).fetchall()
            return [dict(row) for row in rows]

    def complete_cleanup_task(self, task_id: int):
        with self._lock:
            self.conn.execute("DELETE FROM cleanup_tasks WHERE id = ?", (task_id,))
            self.conn.commit()

    def fail_cleanup_task(self, task_id: int, error: str):
        with self._lock:
            self.conn.execute(
                "UPDATE cleanup_tasks SET attempts = attempts + 1, last_error = ? WHERE id = ?",
                (error, task_id),
            )
            self.conn.commit()

    def close(self):
        self.conn.close()
