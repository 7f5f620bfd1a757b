import asyncio
import sys
import json
import os

import httpx
import websockets
from dotenv import load_dotenv

# Load environment variables from backend/.env if available
load_dotenv(os.path.join(os.path.dirname(__file__), '../backend/.env'))


async def e2e_test():
    # Use remote URL if provided, otherwise localhost
    backend_url = os.getenv("BACKEND_URL", "http://localhost:8005").rstrip("/")

    async with httpx.AsyncClient(base_url=backend_url, timeout=10.0) as http:
        response = await http.post("/api/sessions")
        response.raise_for_status()
        session_id = response.json()["session_id"]
    print(f"🆕 Session: {session_id}")

    uri = f"{backend_url.replace('http', 'ws', 1)}/ws/{session_id}"
    print(f"🔌 Connecting to {uri}...")

    try:
        async with websockets.connect(uri) as websocket:
            print("✅ Connected!")

            initial = json.loads(await asyncio.wait_for(websocket.recv(), timeout=5.0))
            print(f"📥 Initial state: {initial.get('type')}")

            # 1. Send dialogue
            for source, text in [("coachee", "I feel stuck with my team."), ("coach", "Tell me more.")]:
                await websocket.send(json.dumps({
                    "type": "transcription",
                    "data": {"text": text, "source": source}
                }))

            # 2. Ask for questions
            payload = {"type": "generate_questions", "data": {"count": 2}}
            print(f"📤 Sending: {json.dumps(payload)}")
            await websocket.send(json.dumps(payload))

            # 3. Receive response
            print("⏳ Waiting for AI response...")
            while True:
                data = json.loads(await asyncio.wait_for(websocket.recv(), timeout=30.0))
                print(f"📨 Received: {data}")

                if data.get("type") == "questions_updated":
                    print("✅ Questions Received!")
                    for question in data["data"]["questions"]:
                        print(f"   💡 {question}")
                    break
                if data.get("type") == "notification" and data["data"]["severity"] == "error":
                    print(f"❌ Error Received: {data['data']['message']}")
                    sys.exit(1)

            await websocket.send(json.dumps({"type": "end_session"}))
            print("🎉 E2E Test Passed!")

    except Exception as e:
        print(f"❌ Test Failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(e2e_test())
