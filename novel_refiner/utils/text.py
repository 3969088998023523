"""Helpers for prompting: response parsing and excerpting."""

import json
import re

SENTENCE_BREAKS = ['. ', '。', '！', '？', '! ', '? ', '\n']


def _close_truncated_json(text: str) -> str:
    """Append the brackets a truncated JSON object or array is missing."""
    stack = []
    in_str = False
    esc = False
    for c in text:
        if esc:
            esc = False
            continue
        if c == '\\' and in_str:
            esc = True
            continue
        if c == '"':
            in_str = not in_str
            continue
        if in_str:
            continue
        if c in ('{', '['):
            stack.append('}' if c == '{' else ']')
        elif c in ('}', ']') and stack:
            stack.pop()
    if in_str:
        text += '"'
    return text.rstrip().rstrip(',') + ''.join(reversed(stack))


def parse_json_response(text: str) -> dict | list:
    """Extract JSON from an LLM response that may contain markdown fences.

    Raises ValueError when nothing parseable is found.
    """
    m = re.search(r'```(?:json)?\s*\n(.*?)\n```', text, re.DOTALL)
    if m:
        try:
            return json.loads(m.group(1))
        except json.JSONDecodeError:
            pass
    cleaned = text.strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass
    for open_ch, close_ch in [('{', '}'), ('[', ']')]:
        start = cleaned.find(open_ch)
        end = cleaned.rfind(close_ch)
        if start != -1 and end > start:
            try:
                return json.loads(cleaned[start:end + 1])
            except json.JSONDecodeError:
                pass
    # Truncated output
    for open_ch in ('{', '['):
        start = cleaned.find(open_ch)
        if start != -1:
            try:
                return json.loads(_close_truncated_json(cleaned[start:]))
            except json.JSONDecodeError:
                pass
    raise ValueError(f"Could not parse JSON from response: {text[:200]}...")


def truncate_text(text: str, max_chars: int, from_end: bool = False) -> str:
    """Cut ``text`` to about ``max_chars`` characters at a sentence boundary.

    With ``from_end`` the tail is kept instead of the head.
    """
    if len(text) <= max_chars:
        return text

    if from_end:
        chunk = text[-max_chars:]
        cuts = [chunk.find(sep) for sep in SENTENCE_BREAKS]
        cuts = [(i, sep) for i, sep in zip(cuts, SENTENCE_BREAKS) if 0 <= i < 200]
        if cuts:
            idx, sep = min(cuts)
            return chunk[idx + len(sep):]
        return "..." + chunk

    chunk = text[:max_chars]
    best = max(chunk.rfind(sep) + len(sep) if chunk.rfind(sep) != -1 else -1 for sep in SENTENCE_BREAKS)
    if best < max_chars - 200:
        best = max_chars
    return text[:best] + "..."


def detect_language(text: str) -> str:
    """Return "zh" when the text is mostly CJK, otherwise "en"."""
    sample = text[:500]
    cjk = sum(1 for c in sample if '\u4e00' <= c <= '\u9fff')
    letters = max(1, sum(1 for c in sample if c.isalpha() or '\u4e00' <= c <= '\u9fff'))
    return "zh" if cjk / letters > 0.3 else "en"
