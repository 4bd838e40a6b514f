"""Note repositories.

Authenticated users' notes live in the ``notes`` table; guests' notes live in
an embedded sqlite key-value store as one JSON array per guest. Routes only
see the ``NoteRepository`` interface and get the right backend from
``get_note_repository()``.
"""
from __future__ import annotations

import json
import os
import sqlite3
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from flask import current_app, session
from flask_login import current_user

from studyflow import db
from studyflow.models import Note
from studyflow.services.sentinels import has_usable_content

GUEST_NOTES_KEY = "guest_notes_v1"

NOTE_FIELDS = ("title", "text_content", "file_reference", "file_name", "file_type")


def now_utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class NoteRecord:
    title: str
    text_content: Optional[str] = None
    file_reference: Optional[str] = None
    file_name: Optional[str] = None
    file_type: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: str = field(default_factory=now_utc_iso)
    updated_at: str = field(default_factory=now_utc_iso)

    @property
    def has_content(self) -> bool:
        return has_usable_content(self.text_content)

    def to_dict(self, include_file: bool = True) -> Dict[str, Any]:
        result = asdict(self)
        result["has_content"] = self.has_content
        result["display_text"] = self.text_content if self.has_content else None
        if not include_file and (self.file_reference or "").startswith("data:"):
            # embedded uploads can be megabytes; listings only need to know one exists
            result["file_reference"] = None
        result["has_file"] = bool(self.file_reference)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NoteRecord":
        known = {k: data.get(k) for k in NOTE_FIELDS + ("id", "created_at", "updated_at") if data.get(k) is not None}
        known.setdefault("title", "Untitled")
        return cls(**known)


class NoteRepository:
    def list_notes(self) -> List[NoteRecord]:
        raise NotImplementedError

    def get(self, note_id: str) -> Optional[NoteRecord]:
        raise NotImplementedError

    def add(self, record: NoteRecord) -> NoteRecord:
        raise NotImplementedError

    def update(self, note_id: str, **changes: Any) -> Optional[NoteRecord]:
        raise NotImplementedError

    def delete(self, note_id: str) -> Optional[NoteRecord]:
        """Remove a note and return what was removed (None if it did not exist)."""
        raise NotImplementedError


def _iso(dt: Optional[datetime]) -> str:
    if dt is None:
        return now_utc_iso()
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


class SqlNoteRepository(NoteRepository):
    def __init__(self, user_id: int):
        self.user_id = user_id

    @staticmethod
    def _to_record(note: Note) -> NoteRecord:
        return NoteRecord(
            id=note.id,
            title=note.title,
            text_content=note.text_content,
            file_reference=note.file_reference,
            file_name=note.file_name,
            file_type=note.file_type,
            created_at=_iso(note.created_at),
            updated_at=_iso(note.updated_at),
        )

    def _query(self):
        return Note.query.filter_by(user_id=self.user_id)

    def list_notes(self):
        return [self._to_record(n) for n in self._query().order_by(Note.created_at.desc()).all()]

    def get(self, note_id):
        note = self._query().filter_by(id=note_id).first()
        return self._to_record(note) if note else None

    def add(self, record):
        note = Note(
            id=record.id,
            user_id=self.user_id,
            created_at=datetime.fromisoformat(record.created_at),
            **{k: getattr(record, k) for k in NOTE_FIELDS},
        )
        db.session.add(note)
        db.session.commit()
        return self._to_record(note)

    def update(self, note_id, **changes):
        note = self._query().filter_by(id=note_id).first()
        if not note:
            return None
        for key, value in changes.items():
            if key in NOTE_FIELDS:
                setattr(note, key, value)
        note.updated_at = datetime.now(timezone.utc)
        db.session.commit()
        return self._to_record(note)

    def delete(self, note_id):
        note = self._query().filter_by(id=note_id).first()
        if not note:
            return None
        record = self._to_record(note)
        db.session.delete(note)
        db.session.commit()
        return record


class KeyValueStore:
    """Tiny sqlite-backed JSON key-value store."""

    def __init__(self, path: str):
        self.path = path
        self.ensure_db()

    def _connect(self):
        return sqlite3.connect(self.path, timeout=10)

    def ensure_db(self) -> None:
        folder = os.path.dirname(self.path)
        if folder:
            os.makedirs(folder, exist_ok=True)
        con = self._connect()
        try:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT,
                    updated_at TEXT
                )
                """
            )
            con.commit()
        finally:
            con.close()

    @staticmethod
    def _read(con, key: str, default: Any) -> Any:
        row = con.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        if not row:
            return default
        try:
            return json.loads(row[0])
        except (TypeError, ValueError):
            return default

    @staticmethod
    def _write(con, key: str, value: Any) -> None:
        con.execute(
            """
            INSERT INTO kv_store(key, value, updated_at) VALUES(?,?,?)
            ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at
            """,
            (key, json.dumps(value, ensure_ascii=False), now_utc_iso()),
        )

    def get(self, key: str, default: Any = None) -> Any:
        con = self._connect()
        try:
            return self._read(con, key, default)
        finally:
            con.close()

    def set(self, key: str, value: Any) -> None:
        con = self._connect()
        try:
            self._write(con, key, value)
            con.commit()
        finally:
            con.close()

    def mutate(self, key: str, fn: Callable[[Any], Tuple[Any, Any]], default: Any = None) -> Any:
        """Read, change and write one key under a single write lock.

        ``fn`` gets the current value and returns ``(new_value, result)``;
        ``result`` is handed back to the caller.
        """
        con = self._connect()
        con.isolation_level = None
        try:
            con.execute("BEGIN IMMEDIATE")
            value, result = fn(self._read(con, key, default))
            self._write(con, key, value)
            con.execute("COMMIT")
            return result
        except Exception:
            if con.in_transaction:
                con.execute("ROLLBACK")
            raise
        finally:
            con.close()

    def delete(self, key: str) -> None:
        con = self._connect()
        try:
            con.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            con.commit()
        finally:
            con.close()


class GuestNoteRepository(NoteRepository):
    def __init__(self, store: KeyValueStore, guest_id: str):
        self.store = store
        self.key = f"{GUEST_NOTES_KEY}:{guest_id}"

    @staticmethod
    def _clean(notes: Any) -> List[Dict[str, Any]]:
        return [n for n in notes if isinstance(n, dict)] if isinstance(notes, list) else []

    def _load(self) -> List[Dict[str, Any]]:
        return self._clean(self.store.get(self.key, []))

    def _change(self, fn: Callable[[List[Dict[str, Any]]], Any]) -> Any:
        def apply(current):
            notes = self._clean(current)
            return notes, fn(notes)
        return self.store.mutate(self.key, apply, [])

    def list_notes(self):
        return [NoteRecord.from_dict(n) for n in self._load()]

    def get(self, note_id):
        for n in self._load():
            if n.get("id") == note_id:
                return NoteRecord.from_dict(n)
        return None

    def add(self, record):
        self._change(lambda notes: notes.insert(0, asdict(record)))
        return record

    def update(self, note_id, **changes):
        def apply(notes):
            for n in notes:
                if n.get("id") == note_id:
                    n.update({k: v for k, v in changes.items() if k in NOTE_FIELDS})
                    n["updated_at"] = now_utc_iso()
                    return NoteRecord.from_dict(n)
            return None
        return self._change(apply)

    def delete(self, note_id):
        def apply(notes):
            for idx, n in enumerate(notes):
                if n.get("id") == note_id:
                    return NoteRecord.from_dict(notes.pop(idx))
            return None
        return self._change(apply)


def get_note_repository() -> Optional[NoteRepository]:
    """Account-scoped repository when logged in, guest repository otherwise.

    Returns None when the caller is anonymous and guest mode is disabled.
    """
    if current_user.is_authenticated:
        return SqlNoteRepository(current_user.id)
    if not current_app.config.get("GUEST_MODE_ENABLED", True):
        return None
    guest_id = session.get("guest_id")
    if not guest_id:
        guest_id = uuid.uuid4().hex
        session["guest_id"] = guest_id
    return GuestNoteRepository(current_app.extensions["studyflow"]["guest_store"], guest_id)
