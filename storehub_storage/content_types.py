"""Extension-based content type resolution for published files."""

import mimetypes
from pathlib import PurePosixPath

DEFAULT_CONTENT_TYPE = "application/octet-stream"

CONTENT_TYPES = {
    ".js": "application/javascript",
    ".mjs": "application/javascript",
    ".css": "text/css",
    ".html": "text/html",
    ".htm": "text/html",
    ".svg": "image/svg+xml",
    ".json": "application/json",
    ".map": "application/json",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".ico": "image/x-icon",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".otf": "font/otf",
    ".eot": "application/vnd.ms-fontobject",
    ".txt": "text/plain",
    ".xml": "application/xml",
}


def resolve_content_type(path: str) -> str:
    """
    Return the MIME type to publish a file with.

    Known web extensions come from a fixed table so the result does not
    depend on the host's mime database; anything else falls back to the
    system lookup and finally to application/octet-stream.
    """
    ext = PurePosixPath(path.replace("\\", "/")).suffix.lower()
    if ext in CONTENT_TYPES:
        return CONTENT_TYPES[ext]

    guessed, _ = mimetypes.guess_type(f"file{ext}") if ext else (None, None)
    return guessed or DEFAULT_CONTENT_TYPE
