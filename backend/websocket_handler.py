"""
WebSocket処理
- 接続管理
- メッセージルーティング（文字起こし受信、質問生成、質問バンク利用）
- ブロードキャスト
"""

from fastapi import WebSocket, WebSocketDisconnect
from typing import Dict, Optional, Set
import logging

from session_manager import SessionManager

logger = logging.getLogger(__name__)


class ConnectionManager:
    """WebSocket接続管理"""

    def __init__(self):
        # session_id -> Set[WebSocket] のマッピング
        self.active_connections: Dict[str, Set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, session_id: str):
        """WebSocket接続を確立"""
        await websocket.accept()

        if session_id not in self.active_connections:
            self.active_connections[session_id] = set()

        self.active_connections[session_id].add(websocket)
        logger.info(f"✅ WebSocket connected: session={session_id}, total={len(self.active_connections[session_id])}")

    def disconnect(self, websocket: WebSocket, session_id: str):
        """WebSocket接続を切断"""
        if session_id in self.active_connections:
            self.active_connections[session_id].discard(websocket)

            # 接続がなくなったらキーを削除
            if not self.active_connections[session_id]:
                del self.active_connections[session_id]

            logger.info(f"❌ WebSocket disconnected: session={session_id}")

    async def broadcast(self, session_id: str, message: dict, exclude: Optional[WebSocket] = None):
        """セッション内の全クライアントにブロードキャスト"""
        if session_id not in self.active_connections:
            return

        # 送信失敗した接続を記録
        dead_connections = set()

        for connection in list(self.active_connections[session_id]):
            if connection == exclude:
                continue

            try:
                await connection.send_json(message)
            except Exception as e:
                logger.error(f"Failed to send message: {e}")
                dead_connections.add(connection)

        for connection in dead_connections:
            self.disconnect(connection, session_id)


async def handle_websocket(
    websocket: WebSocket,
    session_id: str,
    session_manager: SessionManager,
    manager: ConnectionManager
):
    """WebSocket接続のメインループ"""
    session = session_manager.get_session(session_id)
    if not session:
        await websocket.accept()
        await websocket.send_json({'type': 'error', 'message': f'Session {session_id} not found'})
        await websocket.close()
        return

    await manager.connect(websocket, session_id)

    try:
        await websocket.send_json({
            'type': 'initial_data',
            'data': session.state().model_dump(mode='json')
        })

        # メッセージループ
        while True:
            data = await websocket.receive_json()
            await process_message(session_id, data, websocket, session_manager)

    except WebSocketDisconnect:
        manager.disconnect(websocket, session_id)
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
        manager.disconnect(websocket, session_id)


async def process_message(
    session_id: str,
    message: dict,
    websocket: WebSocket,
    session_manager: SessionManager
):
    """メッセージ処理とルーティング"""
    msg_type = message.get('type')
    data = message.get('data') or {}

    try:
        session = session_manager.get_session(session_id)
        if not session:
            await websocket.send_json({'type': 'error', 'message': f'Session {session_id} not found'})
            return

        if msg_type == 'transcription':
            # 音声認識の確定結果
            await session.handle_transcription(data.get('text', ''), data.get('source', 'coachee'))

        elif msg_type == 'generate_questions':
            # 手動で質問生成（結果は questions_updated でブロードキャスト）
            count = data.get('count')
            task = await session.scheduler.trigger(int(count) if count else None)
            if task is not None:
                logger.info(f"✅ Manual question generation triggered for {session_id}")

        elif msg_type == 'use_question':
            await session.use_question(data.get('question', ''))

        elif msg_type == 'end_session':
            await session_manager.end_session(session_id)
            await websocket.send_json({'type': 'session_ended', 'data': {'session_id': session_id}})

        else:
            logger.warning(f"Unknown message type: {msg_type}")
            await websocket.send_json({
                'type': 'error',
                'message': f'Unknown message type: {msg_type}'
            })

    except Exception as e:
        logger.error(f"Error processing message: {e}")
        await websocket.send_json({
            'type': 'error',
            'message': str(e)
        })
