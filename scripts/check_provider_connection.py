#!/usr/bin/env python3
"""
設定中のLLMプロバイダーで質問生成を1回だけ試すスクリプト
"""

import asyncio
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "backend"))

from llm_provider import ConfigurationError, ProviderError, create_provider  # noqa: E402
from models import Source, Utterance  # noqa: E402
from prompt_builder import build_prompt  # noqa: E402
from question_parser import parse_questions  # noqa: E402
from settings_manager import SettingsManager  # noqa: E402

load_dotenv()


async def check_provider():
    config = SettingsManager(os.getenv("COACH_CONFIG_PATH", "config.json")).get_config()
    provider = create_provider(config)
    print(f"⚙️  Provider: {provider!r}")

    dialogue = [
        Utterance(text="I keep postponing the conversation with my manager.", source=Source.COACHEE, timestamp=0),
        Utterance(text="What makes it hard to start?", source=Source.COACH, timestamp=1000),
    ]
    prompt = build_prompt(dialogue, config.number_of_questions, config)

    try:
        print("🚀 Sending test prompt...")
        raw = await provider.generate(prompt.system_instruction, prompt.user_prompt)
    except ConfigurationError as e:
        print(f"❌ Configuration error: {e}")
        return
    except ProviderError as e:
        print(f"❌ Provider error: {e}")
        return

    print(f"✅ Success! Raw response:\n{raw}\n")
    for question in parse_questions(raw, config.number_of_questions):
        print(f"💡 {question}")


if __name__ == "__main__":
    asyncio.run(check_provider())
