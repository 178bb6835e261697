"""
Lenient parsers that turn free-text agent output into structured records.

Neither parser raises: malformed input only yields fewer records.

Article grammar (researcher output):
    - a non-empty line that starts with a digit, '-', '*' or '•' and is longer
      than 10 characters starts a new article; the list marker is stripped
    - following lines extend the article's description
    - the first line containing an http(s) URL sets the article's url; lines
      after it are ignored until the next article marker

Code change grammar (developer output):
    - every fenced code block is one file
    - the text between the previous block and this one must name the path,
      either as "File: <path>" / "Path: <path>" / "文件路径: <path>" or as any
      token that looks like a file name
    - an optional "Action: create|update|delete" hint sets the action
"""

import logging
import re
from datetime import datetime, timezone
from typing import List, Optional

from ..models import ChangeAction, CodeChange, NewsArticle


logger = logging.getLogger(__name__)

DEFAULT_ARTICLE_SOURCE = "AI Research"

_ARTICLE_START = re.compile(r"^[\d\-*•]")
_ARTICLE_MARKER = re.compile(r"^(?:\d+[.)、:]?|[-*•])\s*")
_URL = re.compile(r"https?://[^\s)\]>\"']+")

_FENCED_BLOCK = re.compile(r"```[^\n`]*\n(.*?)(?:```|\Z)", re.DOTALL)
_PATH_LABEL = re.compile(r"(?:文件路径|\bFile|\bPath)\s*[:：]\s*([^\n]+)", re.IGNORECASE)
# Extensions start with a letter: 2.0 and v1.2 are not paths
_PATH_TOKEN = re.compile(r"([\w\-./]*\w\.[A-Za-z]\w*)")
_ACTION_HINT = re.compile(r"Action\s*[:：]\s*(create|update|delete)", re.IGNORECASE)


def parse_articles(content: Optional[str]) -> List[NewsArticle]:
    """
    Parse researcher output into news articles.

    Args:
        content: Raw completion text (may be empty or None)

    Returns:
        Articles in the order they appear
    """
    articles: List[NewsArticle] = []
    current: Optional[dict] = None
    now = datetime.now(timezone.utc).isoformat()

    def flush() -> None:
        if current and current.get("title"):
            articles.append(NewsArticle(
                title=current["title"],
                description=" ".join(current["description"]) or None,
                url=current.get("url"),
                published_at=now,
                source=DEFAULT_ARTICLE_SOURCE,
            ))

    for line in (content or "").splitlines():
        trimmed = line.strip()
        if not trimmed:
            continue

        if _ARTICLE_START.match(trimmed) and len(trimmed) > 10:
            flush()
            title = _ARTICLE_MARKER.sub("", trimmed, count=1).strip().strip("*").strip()
            current = {"title": title or trimmed, "description": [], "url": None}
            continue

        if current is None or current.get("url"):
            continue

        url = _URL.search(trimmed)
        if url:
            current["url"] = url.group(0)
        else:
            current["description"].append(trimmed)

    flush()
    return articles


def parse_code_changes(content: Optional[str]) -> List[CodeChange]:
    """
    Parse developer output into code changes.

    Args:
        content: Raw completion text (may be empty or None)

    Returns:
        One CodeChange per fenced block that has a path hint, in order
    """
    changes: List[CodeChange] = []
    text = content or ""
    header_start = 0

    for block in _FENCED_BLOCK.finditer(text):
        header = text[header_start:block.start()]
        header_start = block.end()

        code = block.group(1).strip()
        path = _path_hint(header)
        if not path or not code:
            logger.debug(f"Skipping fenced block without path hint or content at offset {block.start()}")
            continue

        action = ChangeAction.update
        hint = _ACTION_HINT.search(header)
        if hint:
            action = ChangeAction(hint.group(1).lower())

        changes.append(CodeChange(path=path, content=code, action=action))

    return changes


def _path_hint(header: str) -> Optional[str]:
    # The hint closest to the block wins
    labelled = _PATH_LABEL.findall(header)
    if labelled:
        path = _clean_path(labelled[-1])
        if path:
            return path

    tokens = _PATH_TOKEN.findall(header)
    if tokens:
        return _clean_path(tokens[-1])
    return None


def _clean_path(raw: str) -> str:
    parts = raw.strip().strip("`*'\"").split()
    path = parts[0].strip("`*'\":：") if parts else ""
    if path.startswith("./"):
        path = path[2:]
    return path
