import json

from panelfeedback.core.content import ensure_content, image_block_from_data_uri, normalize_resolution

def test_plain_text_resolution() -> None:
    assert normalize_resolution("hello") == [{"type": "text", "text": "hello"}]

def test_text_with_images() -> None:
    resolution = json.dumps({"text": "ok", "images": ["data:image/png;base64,AAAA"]})
    assert normalize_resolution(resolution) == [
        {"type": "text", "text": "ok"},
        {"type": "image", "data": "AAAA", "mimeType": "image/png"},
    ]

def test_already_decoded_object() -> None:
    content = normalize_resolution({"text": "ok", "images": ["data:image/jpeg;base64,/9j/"]})
    assert content[1] == {"type": "image", "data": "/9j/", "mimeType": "image/jpeg"}

def test_images_only_skips_text_block() -> None:
    content = normalize_resolution({"images": ["data:image/gif;base64,R0lG"]})
    assert content == [{"type": "image", "data": "R0lG", "mimeType": "image/gif"}]

def test_invalid_data_uri_is_dropped() -> None:
    content = normalize_resolution({"text": "t", "images": ["https://example.com/x.png", 42]})
    assert content == [{"type": "text", "text": "t"}]

def test_empty_resolution_yields_one_empty_block() -> None:
    assert normalize_resolution("") == [{"type": "text", "text": ""}]
    assert normalize_resolution({"text": "", "images": []}) == [{"type": "text", "text": ""}]

def test_json_scalar_is_plain_text() -> None:
    assert normalize_resolution("42") == [{"type": "text", "text": "42"}]
    assert normalize_resolution("[1, 2]") == [{"type": "text", "text": "[1, 2]"}]

def test_unrelated_json_object_is_plain_text() -> None:
    assert normalize_resolution('{"a": 1}') == [{"type": "text", "text": '{"a": 1}'}]

def test_image_block_from_data_uri() -> None:
    assert image_block_from_data_uri("data:image/webp;base64,UklG") == {
        "type": "image", "data": "UklG", "mimeType": "image/webp",
    }
    assert image_block_from_data_uri("data:image/png,raw") is None

def test_ensure_content() -> None:
    assert ensure_content([]) == [{"type": "text", "text": ""}]
    assert ensure_content(None) == [{"type": "text", "text": ""}]
    blocks = [{"type": "text", "text": "x"}]
    assert ensure_content(blocks) is blocks
