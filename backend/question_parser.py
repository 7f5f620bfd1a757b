import re
from typing import List

# "1." "1)" "1:" "-" "*" "•" and friends at the start of a line
_MARKER = re.compile(r'^\s*(?:\(?\d+\s*[.):]|[-*•–])\s*')
# markdown bold, e.g. "1. **What next?**" or "**1.** What next?"
_EMPHASIS = re.compile(r'\*\*|__')


def parse_questions(raw_text: str, expected_count: int) -> List[str]:
    """
    Split provider output into at most expected_count questions.
    Fewer lines than requested is not an error; nothing is padded.
    """
    if not raw_text or expected_count <= 0:
        return []

    text = raw_text.replace('\\n', '\n')
    questions = []
    for line in text.splitlines():
        cleaned = _MARKER.sub('', _EMPHASIS.sub('', line)).strip()
        if cleaned:
            questions.append(cleaned)

    return questions[:expected_count]
