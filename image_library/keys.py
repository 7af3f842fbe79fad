"""Storage key generation.

Keys look like ``{folder}/{sanitized-name}-{unix-ms}-{8-char-id}.{ext}``.
The timestamp plus random suffix keeps them unique without any shared
state, and every variant of one upload shares the same base name.
"""

from __future__ import annotations

import os
import re
import time
import uuid
from typing import Optional

_UNSAFE = re.compile(r"[^a-zA-Z0-9]")


def sanitize_name(filename: str) -> str:
    """Lower-case the filename stem and replace anything non-alphanumeric with dashes."""
    stem, _ = os.path.splitext(os.path.basename(filename.replace("\\", "/")))
    return _UNSAFE.sub("-", stem).lower() or "image"


def generate_base_name(filename: str, now_ms: Optional[int] = None) -> str:
    timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
    unique_id = uuid.uuid4().hex[:8]
    return f"{sanitize_name(filename)}-{timestamp}-{unique_id}"


def build_key(folder: str, base_name: str, extension: str) -> str:
    folder = folder.strip("/")
    name = f"{base_name}.{extension.lstrip('.')}"
    return f"{folder}/{name}" if folder else name


def normalize_key(key: str) -> str:
    """Strip leading slashes so ``/pictures/a.webp`` and ``pictures/a.webp`` match."""
    return key.replace("\\", "/").lstrip("/")
