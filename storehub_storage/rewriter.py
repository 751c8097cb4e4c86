"""
Asset reference rewriting for a build's index.html.

Bundlers bake absolute paths ("/assets/index-3f2a.js") or CDN URLs into the
entry document. The published bundle lives under an arbitrary storage
prefix, so references are rewritten to paths relative to the output
directory whenever the referenced file actually exists there. Anything that
cannot be resolved is left exactly as authored.
"""

import html
import json
import logging
import re
from pathlib import Path, PurePosixPath

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

REWRITTEN_ATTRIBUTES = ("src", "href", "srcset")
ASSETS_DIR = "assets"

_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.\-]*:")
_ASSETS_SEGMENT_RE = re.compile(r"(?:^|/)assets/")


def ensure_html_doctype(content: bytes) -> bytes:
    """Prefix the document with <!DOCTYPE html> unless it already has one."""
    if content.lstrip()[:9].lower() == b"<!doctype":
        return content
    return b"<!DOCTYPE html>\n" + content


def _is_external(value: str) -> bool:
    return value.startswith("//") or bool(_SCHEME_RE.match(value))


def _split_suffix(value: str) -> tuple[str, str]:
    """Split "a/b.js?v=1#x" into ("a/b.js", "?v=1#x")."""
    match = re.search(r"[?#]", value)
    if match is None:
        return value, ""
    return value[: match.start()], value[match.start() :]


def _existing_file(root: Path, rel: str) -> Path | None:
    """Return root/rel if it is a file inside root."""
    if not rel:
        return None
    candidate = root / PurePosixPath(rel)
    try:
        resolved = candidate.resolve()
        resolved.relative_to(root.resolve())
    except (OSError, ValueError):
        return None
    return candidate if resolved.is_file() else None


class AssetResolver:
    """Resolves a single URL value against an output directory."""

    def __init__(self, dist_dir: str | Path):
        self.root = Path(dist_dir)
        self.assets_root = self.root / ASSETS_DIR

    def _as_asset(self, rel: str) -> str | None:
        if _existing_file(self.assets_root, rel) is None:
            return None
        return f"{ASSETS_DIR}/{rel}"

    def rewrite(self, original: str) -> str:
        """
        Return the rewritten value, or the original if nothing resolves.

        Query strings and fragments are carried over unchanged.
        """
        value = original.strip()
        if not value:
            return original

        external = _is_external(value)
        path, suffix = _split_suffix(value)

        if external:
            # Only CDN-style URLs pointing into an assets/ folder we also ship
            if "/assets/" in path:
                tail = path.split("/assets/", 1)[1]
                resolved = self._as_asset(tail)
                if resolved is not None:
                    return resolved + suffix
            return original

        clean = path.removeprefix("/")
        if not clean:
            return original

        segment = _ASSETS_SEGMENT_RE.search(clean)
        if segment is not None:
            resolved = self._as_asset(clean[segment.end() :].lstrip("/"))
            if resolved is not None:
                return resolved + suffix

        candidates = []
        if "/" in clean:
            candidates.append((self.assets_root, clean))
        candidates.append((self.assets_root, PurePosixPath(clean).name))
        candidates.append((self.root, clean))

        for base, rel in candidates:
            found = _existing_file(base, rel)
            if found is None:
                continue
            if base is self.assets_root:
                return f"{ASSETS_DIR}/{rel}" + suffix
            return found.relative_to(self.root).as_posix() + suffix

        return original

    def rewrite_srcset(self, original: str) -> str:
        """Rewrite each srcset candidate's URL, keeping its descriptors."""
        candidates = []
        changed = False
        for part in original.split(","):
            part = part.strip()
            if not part:
                continue
            fields = part.split()
            new_url = self.rewrite(fields[0])
            if new_url != fields[0]:
                fields[0] = new_url
                changed = True
            candidates.append(" ".join(fields))

        if not changed:
            return original
        return ", ".join(candidates)


def rewrite_index_html(index_bytes: bytes, dist_dir: str | Path) -> tuple[bytes, bool]:
    """
    Rewrite src/href/srcset references in an HTML document.

    Args:
        index_bytes: Raw document bytes
        dist_dir: Output directory the document will be published from

    Returns:
        (document bytes, changed). When nothing changed the input bytes are
        returned as-is; otherwise the re-serialized document, guaranteed to
        start with a doctype.
    """
    resolver = AssetResolver(dist_dir)
    soup = BeautifulSoup(index_bytes, "html.parser", multi_valued_attributes=None)
    changed = False

    for tag in soup.find_all(True):
        for name in REWRITTEN_ATTRIBUTES:
            value = tag.attrs.get(name)
            if not isinstance(value, str):
                continue
            if name == "srcset":
                new_value = resolver.rewrite_srcset(value)
            else:
                new_value = resolver.rewrite(value)
            if new_value != value:
                logger.debug(f"Rewrote {tag.name}[{name}]: {value} -> {new_value}")
                tag[name] = new_value
                changed = True

    if not changed:
        return index_bytes, False

    return ensure_html_doctype(str(soup).encode("utf-8")), True


def rewrite_index_file(index_path: str | Path) -> bool:
    """
    Rewrite an index.html in place against the directory containing it.

    Returns:
        True if the file was changed
    """
    path = Path(index_path)
    rewritten, changed = rewrite_index_html(path.read_bytes(), path.parent)
    if changed:
        path.write_bytes(rewritten)
    return changed


def annotate_index_html(
    content: str, meta: dict[str, str], config: dict[str, str]
) -> str | None:
    """
    Insert component metadata into the document head.

    Adds one <meta name=... content=...> per meta entry plus a script
    assigning config to window.__STOREHUBX_COMPONENT__, just before </head>.

    Returns:
        The annotated document, or None if there is no </head> to anchor on
    """
    head_close = content.find("</head>")
    if head_close == -1:
        return None

    meta_tags = "".join(
        f'\n    <meta name="{html.escape(name)}" content="{html.escape(value)}">'
        for name, value in meta.items()
    )
    payload = json.dumps(config, indent=4).replace("</", "<\\/")
    script = f"\n    <script>\n        window.__STOREHUBX_COMPONENT__ = {payload};\n    </script>\n"

    return (
        content[:head_close]
        + "\n    <!-- StoreHUBX Component Metadata -->"
        + meta_tags
        + script
        + content[head_close:]
    )
