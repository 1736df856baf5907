"""Common utilities: path management and small text helpers"""
import os
import re
import time
from typing import Optional

# ⚠️ DO NOT import settings here - causes circular import with config.py


# ============= Path Management =============

def get_project_root() -> str:
    """Returns the absolute path to the project's root directory."""
    return os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))


def get_log_file_path() -> str:
    """Creates the log directory if it doesn't exist and returns the full log file path."""
    project_root = get_project_root()
    log_dir = os.path.join(project_root, 'log')

    if not os.path.exists(log_dir):
        os.makedirs(log_dir)

    return os.path.join(log_dir, 'rag_system.log')


# ============= Text Helpers =============

_WHITESPACE_RE = re.compile(r'\s+')


def normalize_whitespace(text: Optional[str], max_chars: Optional[int] = None) -> str:
    """Trim, collapse runs of whitespace to one space and optionally cap the length."""
    if not text or not isinstance(text, str):
        return ""
    cleaned = _WHITESPACE_RE.sub(' ', text.strip())
    return cleaned[:max_chars] if max_chars else cleaned


def generate_preview(content: str, query: str, max_length: int = 200) -> str:
    """
    Build a short excerpt of `content` centred near the query words.

    Picks the first occurrence of the query word whose ±50 char neighbourhood
    contains the most query words; falls back to the start of the content.
    """
    if not content:
        return ""

    query_words = [w for w in query.lower().split() if w]
    content_lower = content.lower()

    best_start = 0
    best_score = 0
    for word in query_words:
        index = content_lower.find(word)
        if index == -1:
            continue
        window = content_lower[max(0, index - 50):index + 50]
        score = sum(1 for w in query_words if w in window)
        if score > best_score:
            best_score = score
            best_start = max(0, index - 50)

    preview = content[best_start:best_start + max_length]
    if best_start > 0:
        preview = "..." + preview
    if best_start + max_length < len(content):
        preview = preview + "..."
    return preview


def elapsed_ms(started: float) -> int:
    """Milliseconds since a time.perf_counter() reading."""
    return int((time.perf_counter() - started) * 1000)
