"""Local persisted state: a SQLite key-value table and the credential.

The only value Clarity persists is the user's API key, stored under a
fixed key.  ``CredentialStore`` gives it explicit read and write
semantics so callers pass the key around instead of reading a global.
"""
from __future__ import annotations
import os
import sqlite3
import hashlib
import logging
from typing import Optional

DEFAULT_DB_PATH = os.environ.get("CLARITY_DB", "clarity.db")
STORAGE_KEY = "clarity_gemini_key"

logger = logging.getLogger(__name__)


class LocalStore:
    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        con = sqlite3.connect(self.db_path)
        try:
            cur = con.cursor()
            cur.execute(
                """CREATE TABLE IF NOT EXISTS local_storage (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );"""
            )
            con.commit()
        finally:
            con.close()

    def get(self, key: str) -> Optional[str]:
        con = sqlite3.connect(self.db_path)
        try:
            cur = con.cursor()
            cur.execute("SELECT value FROM local_storage WHERE key=?", (key,))
            row = cur.fetchone()
            return row[0] if row else None
        finally:
            con.close()

    def set(self, key: str, value: str) -> None:
        con = sqlite3.connect(self.db_path)
        try:
            cur = con.cursor()
            cur.execute(
                """INSERT INTO local_storage(key, value) VALUES(?,?)
                    ON CONFLICT(key) DO UPDATE SET value=excluded.value""",
                (key, value),
            )
            con.commit()
        finally:
            con.close()

    def remove(self, key: str) -> None:
        con = sqlite3.connect(self.db_path)
        try:
            cur = con.cursor()
            cur.execute("DELETE FROM local_storage WHERE key=?", (key,))
            con.commit()
        finally:
            con.close()


class CredentialStore:
    """The user's API key, read on demand and written only on explicit edit."""

    def __init__(self, store: LocalStore, key: str = STORAGE_KEY):
        self.store = store
        self.key = key

    def load(self) -> Optional[str]:
        value = self.store.get(self.key)
        return value or None

    def save(self, value: str) -> bool:
        value = (value or "").strip()
        if not value:
            return False
        self.store.set(self.key, value)
        logger.info("Saved API key %s", fingerprint(value))
        return True

    def clear(self) -> None:
        self.store.remove(self.key)
        logger.info("Cleared stored API key")

    @property
    def configured(self) -> bool:
        return self.load() is not None

# Short, non-reversible tag for a key so logs never carry the key itself

def fingerprint(raw: str) -> str:
    return hashlib.sha256(raw.encode()).hexdigest()[:8]
