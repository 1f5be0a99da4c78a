"""Content fingerprints for deduplicating generated artifacts.

A fingerprint is the SHA-256 of a (content, settings) pair, with settings
canonicalized so key order never matters. Artifacts embed the fingerprint
in their file name (``image_<fingerprint>.jpg``) so it can be recovered
from a stored path without a side index.
"""

import hashlib
import json
import re
from collections.abc import Iterable

FINGERPRINT_LENGTH = 64

_FINGERPRINT_RE = re.compile(r"^[a-fA-F0-9]{64}$")
_PATH_SEPARATORS_RE = re.compile(r"[/\\_.\-]")


def canonicalize_settings(settings: object) -> bytes:
    """Serialize settings as JSON with sorted keys and no whitespace."""
    if settings is None:
        settings = {}
    return json.dumps(
        settings,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    ).encode("utf-8")


def fingerprint(content: bytes | str, settings: object = None) -> str:
    """Return the 64-char hex fingerprint of content generated with settings."""
    if isinstance(content, str):
        content = content.encode("utf-8")

    hasher = hashlib.sha256()
    # length prefix keeps the content/settings boundary unambiguous
    hasher.update(len(content).to_bytes(8, "big"))
    hasher.update(content)
    hasher.update(canonicalize_settings(settings))
    return hasher.hexdigest()


def is_fingerprint(token: str) -> bool:
    return bool(_FINGERPRINT_RE.match(token))


def fingerprint_filename(kind: str, content_fingerprint: str, extension: str) -> str:
    """Build an artifact file name that embeds the fingerprint."""
    if not is_fingerprint(content_fingerprint):
        raise ValueError(f"Not a content fingerprint: {content_fingerprint!r}")
    kind = str(getattr(kind, "value", kind))
    return f"{kind}_{content_fingerprint.lower()}.{extension.lstrip('.')}"


def extract_fingerprint(path: str | None) -> str | None:
    """Recover a fingerprint embedded in a storage path.

    Best effort: any 64-hex-character path segment is taken as the
    fingerprint, even one that was never meant as one.
    """
    if not path:
        return None
    for part in _PATH_SEPARATORS_RE.split(path):
        if len(part) == FINGERPRINT_LENGTH and is_fingerprint(part):
            return part.lower()
    return None


def find_artifact(paths: Iterable[str | None], content_fingerprint: str) -> str | None:
    """Return the first path whose embedded fingerprint matches, if any."""
    wanted = content_fingerprint.lower()
    for path in paths:
        if path and extract_fingerprint(path) == wanted:
            return path
    return None
