import abc
import base64
import csv
import io
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, get_args

import firebase_admin
from firebase_admin import credentials, firestore

from models import QuestionBatchRecord, SessionSortField, StorageResult, Utterance

logger = logging.getLogger(__name__)

NOT_CONFIGURED = "Storage not configured"
SORTABLE_FIELDS = get_args(SessionSortField)


def _iso(epoch_ms: int) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc).isoformat()


class StorageBackend(abc.ABC):
    @abc.abstractmethod
    def save_session(self, session_id: str, data: Dict[str, Any]) -> None:
        pass

    @abc.abstractmethod
    def load_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abc.abstractmethod
    def list_sessions(self) -> List[Dict[str, Any]]:
        pass

    @abc.abstractmethod
    def delete_session(self, session_id: str) -> None:
        pass

    @abc.abstractmethod
    def append_question_batch(self, session_id: str, batch: Dict[str, Any]) -> None:
        pass


class FileStorageBackend(StorageBackend):
    def __init__(self, data_dir: str = "data/sessions"):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"📁 Initialized FileStorageBackend at {self.data_dir}")

    def _get_path(self, session_id: str) -> Path:
        return self.data_dir / f"{session_id}.json"

    def _get_batches_path(self, session_id: str) -> Path:
        return self.data_dir / f"{session_id}.questions.json"

    def save_session(self, session_id: str, data: Dict[str, Any]) -> None:
        with open(self._get_path(session_id), 'w', encoding='utf-8') as f:
            json.dump(data, f, ensure_ascii=False, indent=2)

    def load_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        path = self._get_path(session_id)
        if not path.exists():
            return None
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)

    def list_sessions(self) -> List[Dict[str, Any]]:
        sessions = []
        for file_path in self.data_dir.glob("session_*.json"):
            if file_path.name.endswith(".questions.json"):
                continue
            try:
                with open(file_path, 'r', encoding='utf-8') as f:
                    sessions.append(json.load(f))
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to read session file {file_path}: {e}")
        return sessions

    def delete_session(self, session_id: str) -> None:
        for path in (self._get_path(session_id), self._get_batches_path(session_id)):
            if path.exists():
                path.unlink()

    def append_question_batch(self, session_id: str, batch: Dict[str, Any]) -> None:
        path = self._get_batches_path(session_id)
        batches: List[Dict[str, Any]] = []
        if path.exists():
            with open(path, 'r', encoding='utf-8') as f:
                batches = json.load(f)
        batches.append(batch)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(batches, f, ensure_ascii=False, indent=2)


class FirestoreStorageBackend(StorageBackend):
    def __init__(self, collection_name: str = "coaching_sessions"):
        self.collection_name = collection_name
        self._init_firebase()
        self.db = firestore.client()
        logger.info(f"🔥 Initialized FirestoreStorageBackend (Collection: {collection_name})")

    def _init_firebase(self):
        # Check if already initialized to avoid error
        if firebase_admin._apps:
            return

        # Base64 encoded service account JSON
        service_account_b64 = os.getenv("FIREBASE_SERVICE_ACCOUNT_KEY")
        if service_account_b64:
            try:
                json_str = base64.b64decode(service_account_b64).decode('utf-8')
                cred = credentials.Certificate(json.loads(json_str))
                firebase_admin.initialize_app(cred)
                logger.info("Successfully initialized Firebase with SERVICE_ACCOUNT_KEY")
                return
            except ValueError as e:
                logger.error(f"Failed to decode/parse FIREBASE_SERVICE_ACCOUNT_KEY: {e}")

        cred_path = os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
        if cred_path and os.path.exists(cred_path):
            firebase_admin.initialize_app(credentials.Certificate(cred_path))
        else:
            # Last resort: Application Default Credentials
            logger.warning("No specific Firebase credentials found, trying default.")
            firebase_admin.initialize_app()

    def _doc(self, session_id: str):
        return self.db.collection(self.collection_name).document(session_id)

    def save_session(self, session_id: str, data: Dict[str, Any]) -> None:
        self._doc(session_id).set(data)

    def load_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        doc = self._doc(session_id).get()
        if doc.exists:
            return doc.to_dict()
        return None

    def list_sessions(self) -> List[Dict[str, Any]]:
        docs = self.db.collection(self.collection_name).stream()
        return [doc.to_dict() for doc in docs]

    def delete_session(self, session_id: str) -> None:
        doc = self._doc(session_id)
        for batch in doc.collection("question_batches").stream():
            batch.reference.delete()
        doc.delete()

    def append_question_batch(self, session_id: str, batch: Dict[str, Any]) -> None:
        self._doc(session_id).collection("question_batches").add(batch)


def create_storage_backend(kind: Optional[str] = None) -> Optional[StorageBackend]:
    """STORAGE_BACKEND: file (default) / firestore / none"""
    kind = (kind or os.getenv("STORAGE_BACKEND", "file")).strip().lower()
    if kind == "none":
        logger.warning("⚠️ Storage disabled. Sessions will not be saved.")
        return None
    if kind == "firestore":
        return FirestoreStorageBackend(os.getenv("FIRESTORE_COLLECTION", "coaching_sessions"))
    return FileStorageBackend(os.getenv("SESSION_DATA_DIR", "data/sessions"))


class SessionStore:
    """コーチングセッションの保存・取得・一覧・削除・CSV出力"""

    def __init__(self, backend: Optional[StorageBackend]):
        self.backend = backend

    @property
    def configured(self) -> bool:
        return self.backend is not None

    def save_coaching_session(
        self,
        session_id: str,
        transcript: Sequence[Utterance],
        start_time: Optional[int],
        end_time: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[int] = None
    ) -> StorageResult:
        """
        セッション全体を保存

        Args:
            session_id: セッションID
            transcript: 発話リスト
            start_time: 開始時刻（epoch ms）
            end_time: 終了時刻（省略時は現在時刻）
            metadata: 追加メタデータ

        Returns:
            StorageResult
        """
        if not self.configured:
            logger.warning("Storage not configured - session data not saved")
            return StorageResult(success=False, error=NOT_CONFIGURED)

        if not transcript:
            return StorageResult(success=False, error="Invalid transcript data provided")
        if not start_time:
            return StorageResult(success=False, error="Session start time is required")

        current = now if now is not None else int(datetime.now(tz=timezone.utc).timestamp() * 1000)
        end = end_time or current

        speaker_counts: Dict[str, int] = {}
        for entry in transcript:
            speaker_counts[entry.source.value] = speaker_counts.get(entry.source.value, 0) + 1

        record = {
            "id": session_id,
            "session_start_time": _iso(start_time),
            "session_end_time": _iso(end),
            "duration_seconds": (end - start_time) // 1000,
            "total_entries": len(transcript),
            "coach_entries": speaker_counts.get("coach", 0),
            "coachee_entries": speaker_counts.get("coachee", 0),
            "ai_entries": speaker_counts.get("ai", 0),
            "created_at": _iso(current),
            "session_metadata": {**(metadata or {}), "saved_at": _iso(current)},
            "entries": [
                {
                    "timestamp_utc": _iso(entry.timestamp),
                    "elapsed_seconds": max(0, (entry.timestamp - start_time) // 1000),
                    "speaker": entry.source.value,
                    "content": entry.text,
                    "entry_order": index,
                }
                for index, entry in enumerate(transcript)
            ],
        }

        try:
            self.backend.save_session(session_id, record)
        except Exception as e:
            logger.error(f"Error saving coaching session {session_id}: {e}")
            return StorageResult(success=False, error=str(e), session_id=session_id)

        logger.info(f"💾 Saved coaching session {session_id} with {len(transcript)} entries")
        return StorageResult(success=True, session_id=session_id, data={"entries_count": len(transcript)})

    def get_coaching_session(self, session_id: str) -> StorageResult:
        if not self.configured:
            return StorageResult(success=False, error=NOT_CONFIGURED)
        try:
            data = self.backend.load_session(session_id)
        except Exception as e:
            logger.error(f"Error retrieving coaching session {session_id}: {e}")
            return StorageResult(success=False, error=str(e), session_id=session_id)

        if data is None:
            return StorageResult(success=False, error=f"Session {session_id} not found", session_id=session_id)
        return StorageResult(success=True, session_id=session_id, data=data)

    def list_coaching_sessions(
        self,
        limit: int = 20,
        offset: int = 0,
        order_by: SessionSortField = "created_at",
        ascending: bool = False
    ) -> Dict[str, Any]:
        if not self.configured:
            return {"success": False, "error": NOT_CONFIGURED, "data": [], "count": 0, "has_more": False}
        if order_by not in SORTABLE_FIELDS:
            return {
                "success": False,
                "error": f"Cannot order by {order_by}. Use one of: {', '.join(SORTABLE_FIELDS)}",
                "data": [], "count": 0, "has_more": False
            }

        try:
            sessions = self.backend.list_sessions()
        except Exception as e:
            logger.error(f"Error listing coaching sessions: {e}")
            return {"success": False, "error": str(e), "data": [], "count": 0, "has_more": False}

        sessions.sort(key=lambda s: (s.get(order_by) is not None, s.get(order_by)), reverse=not ascending)
        # list views don't carry the transcript
        page = [
            {k: v for k, v in s.items() if k != "entries"}
            for s in sessions[offset:offset + limit]
        ]
        count = len(sessions)
        return {"success": True, "data": page, "count": count, "has_more": count > offset + limit}

    def delete_coaching_session(self, session_id: str) -> StorageResult:
        if not self.configured:
            return StorageResult(success=False, error=NOT_CONFIGURED)
        try:
            self.backend.delete_session(session_id)
        except Exception as e:
            logger.error(f"Error deleting coaching session {session_id}: {e}")
            return StorageResult(success=False, error=str(e), session_id=session_id)
        logger.info(f"🗑 Deleted coaching session {session_id}")
        return StorageResult(success=True, session_id=session_id)

    def export_session_to_csv(self, session_id: str) -> StorageResult:
        result = self.get_coaching_session(session_id)
        if not result.success:
            return result

        session = result.data
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator='\n')
        writer.writerow(['Timestamp', 'Elapsed Time (seconds)', 'Speaker', 'Text'])
        for entry in sorted(session.get("entries", []), key=lambda e: e.get("entry_order", 0)):
            writer.writerow([
                entry.get("timestamp_utc", ""),
                entry.get("elapsed_seconds", 0),
                str(entry.get("speaker", "")).capitalize(),
                entry.get("content", ""),
            ])

        date = datetime.now(tz=timezone.utc).strftime('%Y-%m-%d')
        return StorageResult(
            success=True,
            session_id=session_id,
            data={
                "csv_content": buffer.getvalue(),
                "filename": f"coaching-session-{session_id}-{date}.csv",
            }
        )

    def save_question_batch(self, session_id: str, record: QuestionBatchRecord) -> StorageResult:
        if not self.configured:
            return StorageResult(success=False, error=NOT_CONFIGURED)
        try:
            self.backend.append_question_batch(session_id, {
                "timestamp": _iso(record.timestamp),
                "questions": record.questions,
            })
        except Exception as e:
            logger.error(f"Failed to save question batch for {session_id}: {e}")
            return StorageResult(success=False, error=str(e), session_id=session_id)
        return StorageResult(success=True, session_id=session_id)

    def test_connection(self) -> StorageResult:
        if not self.configured:
            return StorageResult(success=False, error=NOT_CONFIGURED)
        try:
            self.backend.list_sessions()
        except Exception as e:
            logger.error(f"Storage connection test failed: {e}")
            return StorageResult(success=False, error=str(e))
        return StorageResult(success=True)
