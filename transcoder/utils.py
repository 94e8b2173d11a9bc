import mimetypes
import re

# HLS types are not in every platform's mimetypes table
_CONTENT_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/MP2T",
    ".m2ts": "video/MP2T",
}


def guess_content_type(name: str) -> str | None:
    """Content-Type hint for an uploaded artifact, None when unknown."""
    lowered = name.lower()
    for suffix, content_type in _CONTENT_TYPES.items():
        if lowered.endswith(suffix):
            return content_type
    mime, _ = mimetypes.guess_type(name)
    return mime


def safe_fragment(value: str, max_length: int = 40) -> str:
    """Reduce an opaque identifier to something usable inside a file name."""
    cleaned = re.sub(r"[^A-Za-z0-9_.-]+", "_", value).strip("._")
    return cleaned[:max_length] or "job"


def tail(text: str, limit: int) -> str:
    """Last `limit` characters of text; errors are usually at the end of ffmpeg output."""
    if limit <= 0:
        return ""
    return text[-limit:]
