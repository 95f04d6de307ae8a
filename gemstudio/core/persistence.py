import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional

from gemstudio.core.models import UserProfile
from gemstudio.utils.logger import get_logger

logger = get_logger("store")


class ProfileStore(ABC):
    """User profiles (feature flags, credits, expiry) and the shared studio config."""

    @abstractmethod
    def get_profile(self, user_id: str) -> UserProfile:
        pass

    @abstractmethod
    def save_profile(self, profile: UserProfile):
        pass

    @abstractmethod
    def update_credits(self, user_id: str, credits: int):
        pass

    @abstractmethod
    def reserve_credit(self, user_id: str) -> Optional[int]:
        """Atomically takes one credit. Returns the new balance, or None when none was left."""
        pass

    @abstractmethod
    def refund_credit(self, user_id: str):
        pass

    @abstractmethod
    def read_config(self) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def write_config(self, config: Dict[str, Any]):
        pass


class JobStore(ABC):
    @abstractmethod
    def create_job(self, job_id: str, initial_data: Dict[str, Any]):
        pass

    @abstractmethod
    def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def update_job(self, job_id: str, updates: Dict[str, Any]):
        pass

    @abstractmethod
    def list_active_jobs(self) -> int:
        pass


class _SQLiteStore:
    """Thread-local connections over one WAL-mode database file."""

    SCHEMA = ""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._local = threading.local()
        self._init_db()

    def _get_conn(self):
        if not hasattr(self._local, "conn"):
            self._local.conn = sqlite3.connect(self.db_path)
            self._local.conn.row_factory = sqlite3.Row
        return self._local.conn

    def _init_db(self):
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.executescript(self.SCHEMA)
        conn.commit()
        conn.close()


class SQLiteProfileStore(_SQLiteStore, ProfileStore):
    SCHEMA = """
        CREATE TABLE IF NOT EXISTS profiles (
            user_id TEXT PRIMARY KEY,
            can_use_photo INTEGER NOT NULL DEFAULT 1,
            can_use_video INTEGER NOT NULL DEFAULT 1,
            credits INTEGER NOT NULL,
            expires_at TEXT,
            role TEXT NOT NULL DEFAULT 'user'
        );
        CREATE TABLE IF NOT EXISTS app_config (
            key TEXT PRIMARY KEY,
            value JSON NOT NULL
        );
    """

    CONFIG_KEY = "studio"

    def __init__(self, db_path: str = "profiles.db", default_credits: int = 10):
        self.default_credits = default_credits
        super().__init__(db_path)

    @staticmethod
    def _row_to_profile(row) -> UserProfile:
        expires_at = datetime.fromisoformat(row["expires_at"]) if row["expires_at"] else None
        return UserProfile(
            user_id=row["user_id"],
            can_use_photo=bool(row["can_use_photo"]),
            can_use_video=bool(row["can_use_video"]),
            credits=row["credits"],
            expires_at=expires_at,
            role=row["role"],
        )

    def get_profile(self, user_id: str) -> UserProfile:
        """Returns the stored profile, creating a default one on first sight."""
        conn = self._get_conn()
        row = conn.execute("SELECT * FROM profiles WHERE user_id = ?", (user_id,)).fetchone()
        if row:
            return self._row_to_profile(row)

        profile = UserProfile(user_id=user_id, credits=self.default_credits)
        self.save_profile(profile)
        logger.info(f"👤 Created profile for {user_id} with {profile.credits} credits")
        return profile

    def save_profile(self, profile: UserProfile):
        conn = self._get_conn()
        conn.execute(
            "INSERT OR REPLACE INTO profiles (user_id, can_use_photo, can_use_video, credits, expires_at, role) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                profile.user_id,
                int(profile.can_use_photo),
                int(profile.can_use_video),
                profile.credits,
                profile.expires_at.isoformat() if profile.expires_at else None,
                profile.role,
            ),
        )
        conn.commit()

    def update_credits(self, user_id: str, credits: int):
        conn = self._get_conn()
        cursor = conn.execute("UPDATE profiles SET credits = ? WHERE user_id = ?", (credits, user_id))
        conn.commit()
        if cursor.rowcount == 0:
            raise KeyError(f"Unknown profile '{user_id}'")

    def reserve_credit(self, user_id: str) -> Optional[int]:
        conn = self._get_conn()
        cursor = conn.execute(
            "UPDATE profiles SET credits = credits - 1 WHERE user_id = ? AND credits > 0", (user_id,)
        )
        conn.commit()
        if cursor.rowcount == 0:
            return None
        row = conn.execute("SELECT credits FROM profiles WHERE user_id = ?", (user_id,)).fetchone()
        return row["credits"]

    def refund_credit(self, user_id: str):
        conn = self._get_conn()
        conn.execute("UPDATE profiles SET credits = credits + 1 WHERE user_id = ?", (user_id,))
        conn.commit()

    def read_config(self) -> Optional[Dict[str, Any]]:
        conn = self._get_conn()
        row = conn.execute("SELECT value FROM app_config WHERE key = ?", (self.CONFIG_KEY,)).fetchone()
        if not row:
            return None
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError:
            logger.warning("⚠️ Stored studio config is not valid JSON, ignoring it.")
            return None

    def write_config(self, config: Dict[str, Any]):
        conn = self._get_conn()
        conn.execute(
            "INSERT OR REPLACE INTO app_config (key, value) VALUES (?, ?)",
            (self.CONFIG_KEY, json.dumps(config)),
        )
        conn.commit()


class SQLiteJobStore(_SQLiteStore, JobStore):
    SCHEMA = """
        CREATE TABLE IF NOT EXISTS jobs (
            job_id TEXT PRIMARY KEY,
            kind TEXT NOT NULL DEFAULT 'photoshoot',
            status TEXT NOT NULL,
            result JSON,
            error TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );
    """

    COLUMNS = {"kind", "status", "result", "error"}

    def __init__(self, db_path: str = "jobs.db"):
        super().__init__(db_path)

    def create_job(self, job_id: str, initial_data: Dict[str, Any]):
        conn = self._get_conn()
        status = initial_data.get("status", "pending")
        result = json.dumps(initial_data["result"]) if initial_data.get("result") is not None else None

        conn.execute(
            "INSERT INTO jobs (job_id, kind, status, result, error) VALUES (?, ?, ?, ?, ?)",
            (job_id, initial_data.get("kind", "photoshoot"), status, result, initial_data.get("error")),
        )
        conn.commit()

    def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        conn = self._get_conn()
        row = conn.execute("SELECT * FROM jobs WHERE job_id = ?", (job_id,)).fetchone()
        if not row:
            return None

        data = dict(row)
        if data["result"]:
            try:
                data["result"] = json.loads(data["result"])
            except json.JSONDecodeError:
                data["result"] = None
        return data

    def update_job(self, job_id: str, updates: Dict[str, Any]):
        fields = []
        values = []

        for k, v in updates.items():
            if k not in self.COLUMNS:
                raise ValueError(f"Unknown job column '{k}'")
            if k == "result":
                v = json.dumps(v)
            fields.append(f"{k} = ?")
            values.append(v)

        if not fields:
            return
        values.append(job_id)

        conn = self._get_conn()
        conn.execute(f"UPDATE jobs SET {', '.join(fields)} WHERE job_id = ?", values)
        conn.commit()

    def list_active_jobs(self) -> int:
        conn = self._get_conn()
        row = conn.execute("SELECT COUNT(*) FROM jobs WHERE status IN ('pending', 'processing')").fetchone()
        return row[0]
