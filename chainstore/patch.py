"""Merge patches for object metadata."""

from __future__ import annotations

import json
from typing import Mapping

# Characters escaped so the output stays safe to embed in HTML.
_HTML_SAFE = str.maketrans(
    {
        "<": "\\u003c",
        ">": "\\u003e",
        "&": "\\u0026",
        "\u2028": "\\u2028",
        "\u2029": "\\u2029",
    }
)


def get_annotations_patch(new_annotations: Mapping[str, str]) -> bytes:
    """Return JSON merge-patch bytes that set the given annotations."""
    metadata = {"annotations": dict(new_annotations)} if new_annotations else {}
    text = json.dumps(
        {"metadata": metadata},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return text.translate(_HTML_SAFE).encode("utf-8")