"""
質問バンク
設定の固定質問リストを解析し、発話に関連する質問をハイライトする
"""

from typing import List, Set

# (発話のキーワード, 質問側のキーワード)
SEMANTIC_HINTS = [
    ("stuck", "next"),
    ("goal", "achieve"),
    ("challenge", "strength"),
    ("decision", "option"),
]


def parse_question_bank(question_bank_text: str) -> List[str]:
    """空行区切りのテキストを質問リストに変換（'?' を含むもののみ）"""
    if not question_bank_text:
        return []

    blocks = (block.strip() for block in question_bank_text.replace('\r\n', '\n').split('\n\n'))
    return [q for q in blocks if q and '?' in q]


def highlight_relevant_questions(text: str, question_bank: List[str]) -> List[int]:
    """
    発話に関連する質問のインデックスを返す

    Args:
        text: 発話テキスト
        question_bank: 質問リスト

    Returns:
        関連する質問のインデックス（昇順）
    """
    if not question_bank or not text:
        return []

    lowered = text.lower()
    keywords = [w for w in lowered.split(' ') if len(w) > 3]
    highlighted: Set[int] = set()

    for index, question in enumerate(question_bank):
        question_lower = question.lower()
        if any(k in question_lower for k in keywords):
            highlighted.add(index)
            continue
        if any(a in lowered and b in question_lower for a, b in SEMANTIC_HINTS):
            highlighted.add(index)

    return sorted(highlighted)
