"""Content item types and the URL helpers used when authoring curriculum."""
from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional

CONTENT_TYPE_LABELS = {
    "video": "Video",
    "slide_deck": "Slide Deck",
    "guide": "Interactive Guide",
    "clay_table": "Clay Table",
    "ai_tool": "AI Tool",
    "text": "Text/Notes",
    "external_link": "External Link",
    "credentials": "Credentials",
    "sop_link": "SOP Link",
}
CONTENT_TYPES = tuple(CONTENT_TYPE_LABELS)

# Embeddable types render the stored embed_url directly.
EMBED_TYPES = {"video", "slide_deck", "guide", "clay_table", "external_link", "sop_link"}

_VIDEO_HOSTS = ("youtube.com", "youtu.be", "loom.com", "grain.com", "grain.co", "vimeo.com")

_YOUTUBE_RE = re.compile(
    r"(?:youtube\.com/(?:[^/]+/.+/|(?:v|e(?:mbed)?|live)/|.*[?&]v=)|youtu\.be/)([^\"&?/\s]{11})"
)
_LOOM_ID_RE = re.compile(r"[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}", re.IGNORECASE)
_GAMMA_RE = re.compile(r"gamma\.app/(?:docs/[^/]+|embed)/([a-zA-Z0-9]+)")


def detect_content_type(url: str | None) -> str:
    """Guess how a URL should render; no URL means plain text."""
    if not url:
        return "text"
    lower = url.lower()
    if url.startswith("ai-tool:"):
        return "ai_tool"
    if url.startswith("text:"):
        return "text"
    if any(host in lower for host in _VIDEO_HOSTS):
        return "video"
    if "gamma.app" in lower:
        return "slide_deck"
    if "guidde.com" in lower:
        return "guide"
    if "clay.com" in lower:
        return "clay_table"
    return "external_link"


def normalize_embed_url(url: str | None) -> str:
    """Rewrite share links into their embeddable form where we know how."""
    if not url:
        return ""

    m = _YOUTUBE_RE.search(url)
    if m:
        return f"https://www.youtube.com/embed/{m.group(1)}?rel=0"

    if "loom.com" in url:
        m = _LOOM_ID_RE.search(url)
        if m:
            return f"https://www.loom.com/embed/{m.group(0)}"
        return re.sub(r"/share/|/v/", "/embed/", url, count=1).split("?")[0]

    if "gamma.app" in url and "/embed/" not in url:
        m = _GAMMA_RE.search(url)
        if m:
            return f"https://gamma.app/embed/{m.group(1)}"

    return url


def extract_ai_tool_slug(url: str) -> Optional[str]:
    if url.startswith("ai-tool:"):
        return url[len("ai-tool:"):].strip()
    return None


def extract_text_content(url: str) -> Optional[str]:
    if url.startswith("text:"):
        return url[len("text:"):].strip()
    return None


def parse_credentials_from_text(text: str) -> Optional[Dict[str, str]]:
    """Pull login url / username / password out of ``key: value`` lines."""
    data: Dict[str, str] = {}
    for line in (text or "").split("\n"):
        line = line.strip()
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        key = key.strip().lower()
        value = value.strip()
        if "url" in key or "login" in key or "link" in key:
            data["login_url"] = value
        elif "email" in key or "user" in key:
            data["username"] = value
        elif "pass" in key:
            data["password"] = value
    if data.get("login_url") or data.get("username") or data.get("password"):
        return data
    return None


def content_item_to_embed_url(item: Dict[str, Any]) -> str:
    """Collapse a content item into the single-string form the lesson player reads."""
    ctype = item.get("content_type")
    if ctype == "ai_tool":
        return f"ai-tool:{item.get('ai_tool_slug') or ''}"
    if ctype == "text":
        return f"text:{item.get('content_text') or ''}"
    if ctype == "credentials":
        return f"credentials:{json.dumps(item.get('credentials_data') or {})}"
    return item.get("embed_url") or ""
