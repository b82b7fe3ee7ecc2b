from __future__ import annotations

import json
import re
from typing import Any

_DATA_URI_RE = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)


def text_block(text: str) -> dict[str, Any]:
    return {"type": "text", "text": text}


def image_block_from_data_uri(data_uri: str) -> dict[str, Any] | None:
    """Split ``data:<mime>;base64,<payload>`` into an MCP image block.

    Returns None for anything that is not a base64 data URI.
    """
    if not isinstance(data_uri, str):
        return None
    match = _DATA_URI_RE.match(data_uri)
    if not match:
        return None
    return {"type": "image", "data": match.group(2), "mimeType": match.group(1)}


def normalize_resolution(resolution: Any) -> list[dict[str, Any]]:
    """Turn a collaborator resolution into an ordered list of content blocks.

    A resolution is either free text, or a JSON object (already decoded or
    as a string) with ``text`` and optional ``images`` data URIs. The result
    always holds at least one block.
    """
    parsed: Any = resolution
    if isinstance(resolution, str):
        try:
            parsed = json.loads(resolution)
        except ValueError:
            return [text_block(resolution)]

    if not isinstance(parsed, dict) or not ("text" in parsed or "images" in parsed):
        # JSON scalars, arrays and unrelated objects are still plain text answers
        if isinstance(resolution, str):
            return [text_block(resolution)]
        return [text_block(json.dumps(resolution, ensure_ascii=False))]

    content: list[dict[str, Any]] = []
    text = parsed.get("text")
    if text:
        content.append(text_block(str(text)))
    images = parsed.get("images")
    if isinstance(images, list):
        for data_uri in images:
            block = image_block_from_data_uri(data_uri)
            if block is not None:
                content.append(block)

    return ensure_content(content)


def ensure_content(content: Any) -> list[dict[str, Any]]:
    """Never hand back zero content blocks."""
    if not isinstance(content, list) or not content:
        return [text_block("")]
    return content
