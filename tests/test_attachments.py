from __future__ import annotations

import base64
import io

import pytest
from PIL import Image

from lotl.controller.attachments import decode_all, decode_data_url
from lotl.controller.errors import AttachmentError


def _data_url(fmt: str, declared: str) -> str:
    buf = io.BytesIO()
    Image.new("RGB", (8, 5), (0, 128, 255)).save(buf, format=fmt)
    return f"data:{declared};base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def test_png_is_decoded_with_dimensions() -> None:
    att = decode_data_url(_data_url("PNG", "image/png"), platform="aistudio")
    assert att.mime_type == "image/png"
    assert (att.width, att.height) == (8, 5)
    assert att.extension == "png"
    assert base64.b64decode(att.to_base64()) == att.data


def test_actual_format_wins_over_declared_mime() -> None:
    att = decode_data_url(_data_url("GIF", "image/png"))
    assert att.mime_type == "image/gif"
    assert att.extension == "gif"


@pytest.mark.parametrize(
    "value",
    [
        "not a data url",
        "data:text/plain;base64,aGVsbG8=",
        "data:image/png;base64,aGVsbG8=",
    ],
)
def test_invalid_payloads_raise(value: str) -> None:
    with pytest.raises(AttachmentError) as excinfo:
        decode_data_url(value, platform="aistudio")
    assert excinfo.value.platform == "aistudio"


def test_decode_all_handles_none() -> None:
    assert decode_all(None) == []
    assert len(decode_all([_data_url("JPEG", "image/jpeg")])) == 1
