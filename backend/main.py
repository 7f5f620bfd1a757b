"""
FastAPI Main Application
Coaching Assistant API - real-time coaching question generation
"""

import asyncio
import functools
import os
from pathlib import Path
from contextlib import asynccontextmanager
import logging

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Query, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import ValidationError

from models import (
    AddUtteranceRequest,
    GenerateQuestionsRequest,
    ListSessionsResponse,
    SessionSortField,
    SessionState,
    StorageResult,
    UseQuestionRequest,
)
from question_bank import parse_question_bank
from session_manager import SessionManager
from settings_manager import BUILT_IN_MODEL_GROUPS, SettingsManager
from storage import SessionStore, create_storage_backend
from websocket_handler import ConnectionManager, handle_websocket

# 環境変数読み込み
BASE_DIR = Path(__file__).resolve().parents[1]
load_dotenv()
load_dotenv(dotenv_path=BASE_DIR / ".env", override=False)

# ログ設定
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# グローバル変数
ws_manager = ConnectionManager()
settings_manager = SettingsManager(os.getenv("COACH_CONFIG_PATH", "config.json"))
session_store = SessionStore(create_storage_backend())
session_manager = SessionManager(settings_manager, store=session_store, broadcaster=ws_manager.broadcast)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """アプリケーションのライフサイクル管理"""
    logger.info("🚀 Coaching Assistant API starting...")

    yield

    logger.info("👋 Coaching Assistant API shutting down...")
    await session_manager.shutdown()


app = FastAPI(
    title="Coaching Assistant API",
    version="1.0.0",
    description="Real-time coaching question assistant",
    lifespan=lifespan
)

allowed_origins = ["http://localhost:3000"]
frontend_url = os.getenv("FRONTEND_URL", "").rstrip("/")
if frontend_url:
    allowed_origins.append(frontend_url)
    logger.info(f"✅ Added CORS origin: {frontend_url}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def _run_storage(func, *args, **kwargs):
    """ストレージ呼び出し（同期I/O）をスレッドプールで実行"""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))


def _get_live_session(session_id: str):
    session = session_manager.get_session(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


# REST API エンドポイント

@app.get("/")
async def root():
    """ヘルスチェック"""
    config = settings_manager.get_config()
    return {
        "status": "ok",
        "message": "Coaching Assistant API",
        "features": {
            "anthropic_api": bool(config.anthropic_api_key),
            "openai_api": bool(config.openai_api_key),
            "gemini_api": bool(config.gemini_api_key),
            "storage": session_store.configured,
        }
    }


@app.get("/api/settings")
async def get_settings():
    """現在の設定を取得"""
    return settings_manager.get_public_settings()


@app.post("/api/settings")
async def update_settings(updates: dict):
    """設定を更新し、ライブセッションのプロバイダーを再構築"""
    try:
        config = settings_manager.update_settings(updates)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    session_manager.apply_config(config)
    logger.info("✅ Settings updated via API")
    return {"status": "ok", "settings": settings_manager.get_public_settings()}


@app.get("/api/models")
async def list_models():
    config = settings_manager.get_config()
    custom = {
        "name": "Custom Models",
        "models": [m.model_dump() for m in config.custom_models],
    }
    return {"groups": BUILT_IN_MODEL_GROUPS + [custom], "selected": config.ai_model}


@app.get("/api/question-bank")
async def get_question_bank():
    return {"questions": parse_question_bank(settings_manager.get_config().question_bank)}


@app.post("/api/sessions", response_model=SessionState)
async def create_session():
    """ライブセッション開始"""
    session = session_manager.create_session()
    return session.state()


@app.get("/api/sessions", response_model=list[SessionState])
async def list_live_sessions():
    return [s.state() for s in session_manager.list_sessions()]


@app.get("/api/sessions/{session_id}", response_model=SessionState)
async def get_session(session_id: str):
    """ライブセッションの状態取得"""
    return _get_live_session(session_id).state()


@app.post("/api/sessions/{session_id}/utterances")
async def add_utterance(session_id: str, request: AddUtteranceRequest):
    """確定した文字起こしを追加"""
    session = _get_live_session(session_id)
    utterance = await session.handle_transcription(request.text, request.source)
    if utterance is None:
        return {"status": "ignored"}
    return {"status": "ok", "utterance": utterance.model_dump(mode='json')}


@app.post("/api/sessions/{session_id}/questions")
async def generate_questions(session_id: str, request: GenerateQuestionsRequest):
    """手動で質問生成（結果を待って返す）"""
    session = _get_live_session(session_id)
    result = await session.generate_questions(request.count)
    if result is None:
        return {"status": "not_generated", "questions": session.suggested_questions}
    return {
        "status": "ok",
        "generated": result.questions,
        "questions": session.suggested_questions
    }


@app.post("/api/sessions/{session_id}/use-question")
async def use_question(session_id: str, request: UseQuestionRequest):
    session = _get_live_session(session_id)
    utterance = await session.use_question(request.question)
    if utterance is None:
        raise HTTPException(status_code=400, detail="Question is empty")
    return {"status": "ok", "utterance": utterance.model_dump(mode='json')}


@app.post("/api/sessions/{session_id}/end")
async def end_session(session_id: str):
    """セッション終了（保存）"""
    _get_live_session(session_id)
    result = await session_manager.end_session(session_id)
    return {"status": "ended", "session_id": session_id, "saved": result.model_dump() if result else None}


# --- Saved session history ---

@app.get("/api/history", response_model=ListSessionsResponse)
async def list_history(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    order_by: SessionSortField = "created_at",
    ascending: bool = False
):
    return await _run_storage(
        session_store.list_coaching_sessions, limit=limit, offset=offset, order_by=order_by, ascending=ascending
    )


@app.get("/api/history/{session_id}", response_model=StorageResult)
async def get_history(session_id: str):
    result = await _run_storage(session_store.get_coaching_session, session_id)
    if not result.success:
        raise HTTPException(status_code=404, detail=result.error)
    return result


@app.delete("/api/history/{session_id}", response_model=StorageResult)
async def delete_history(session_id: str):
    result = await _run_storage(session_store.delete_coaching_session, session_id)
    if not result.success:
        raise HTTPException(status_code=500, detail=result.error)
    return result


@app.get("/api/history/{session_id}/export")
async def export_history(session_id: str):
    result = await _run_storage(session_store.export_session_to_csv, session_id)
    if not result.success:
        raise HTTPException(status_code=404, detail=result.error)
    return Response(
        content=result.data["csv_content"],
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{result.data["filename"]}"'}
    )


@app.get("/api/storage/status", response_model=StorageResult)
async def storage_status():
    return await _run_storage(session_store.test_connection)


# WebSocket エンドポイント

@app.websocket("/ws/{session_id}")
async def websocket_endpoint(websocket: WebSocket, session_id: str):
    """
    WebSocket接続

    - 文字起こし結果の受信
    - 質問提案・通知の送信
    """
    await handle_websocket(websocket, session_id, session_manager, ws_manager)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", os.getenv("BACKEND_PORT", "8005")))
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=True,
        log_level="info"
    )
