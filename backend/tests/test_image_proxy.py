import io
from unittest import mock

import pytest
from PIL import Image

from newsdesk.utils import image_proxy
from newsdesk.utils.image_proxy import (
    ImageProxyError,
    analyze_image,
    detect_image_signature,
    fetch_source_image,
    prepare_for_instagram,
)


def _image_bytes(size, mode="RGB", fmt="PNG"):
    color = (10, 20, 30, 128) if mode == "RGBA" else (10, 20, 30)
    buffer = io.BytesIO()
    Image.new(mode, size, color).save(buffer, format=fmt)
    return buffer.getvalue()


def _response(content=b"", content_type="image/png", status_code=200, url="https://cdn.example/final.png"):
    response = mock.Mock()
    response.content = content
    response.iter_content.return_value = [content] if content else []
    response.ok = 200 <= status_code < 400
    response.status_code = status_code
    response.url = url
    response.headers = {"Content-Type": content_type}
    return response


def _session(response):
    session = mock.Mock()
    session.get.return_value = response
    return session


def _decoded(data):
    return Image.open(io.BytesIO(data))


def test_wide_image_is_cropped_to_max_ratio():
    output, meta = prepare_for_instagram(_image_bytes((2000, 500), mode="RGBA"))
    image = _decoded(output)
    assert image.format == "JPEG"
    assert image.mode == "RGB"
    assert image.size == (955, 500)
    assert meta["original"] == {"format": "png", "width": 2000, "height": 500}
    assert meta["output"]["bytes"] == len(output)


def test_tall_image_is_cropped_to_portrait_ratio():
    output, _ = prepare_for_instagram(_image_bytes((400, 1000)))
    assert _decoded(output).size == (400, 500)


def test_large_image_is_downscaled():
    output, meta = prepare_for_instagram(_image_bytes((3000, 2000), fmt="JPEG"))
    assert _decoded(output).size == (1440, 960)
    assert meta["output"]["width"] == 1440


def test_undecodable_bytes():
    with pytest.raises(ImageProxyError) as excinfo:
        prepare_for_instagram(b"<html>not an image</html>")
    assert excinfo.value.status_code == 422


def test_detect_image_signature():
    assert detect_image_signature(_image_bytes((5, 5), fmt="JPEG")) == "jpeg"
    assert detect_image_signature(_image_bytes((5, 5))) == "png"
    assert detect_image_signature(b"GIF89a....") == "gif"
    assert detect_image_signature(b"RIFF\x00\x00\x00\x00WEBPVP8 ") == "webp"
    assert detect_image_signature(b"<!doctype html>") is None


@pytest.mark.parametrize("src", [None, "", "ftp://cdn.example/a.png", "cdn.example/a.png"])
def test_invalid_source_urls(src):
    with pytest.raises(ImageProxyError) as excinfo:
        fetch_source_image(src, session=_session(_response()))
    assert excinfo.value.status_code == 400


def test_fetch_rejects_non_image_content():
    session = _session(_response(b"<html></html>", content_type="text/html"))
    with pytest.raises(ImageProxyError) as excinfo:
        fetch_source_image("https://cdn.example/a.png", session=session)
    assert excinfo.value.status_code == 400
    assert excinfo.value.extra == {"contentType": "text/html"}


def test_fetch_upstream_failure():
    session = _session(_response(status_code=404))
    with pytest.raises(ImageProxyError) as excinfo:
        fetch_source_image("https://cdn.example/a.png", session=session)
    assert excinfo.value.status_code == 502
    assert excinfo.value.extra == {"status": 404}


def test_fetch_sends_browser_headers():
    data = _image_bytes((10, 10))
    session = _session(_response(data))

    source = fetch_source_image(" https://cdn.example/a.png ", session=session)

    assert source.data == data
    assert source.final_url == "https://cdn.example/final.png"
    headers = session.get.call_args.kwargs["headers"]
    assert "Mozilla" in headers["User-Agent"]


def test_analyze_reports_html_payload():
    session = _session(_response(b"<!DOCTYPE html><html>blocked</html>", content_type="text/html"))

    report, status = analyze_image("https://cdn.example/a.png", session=session)

    assert status == 422
    assert report["detectedType"] == "HTML"
    assert report["detectedIsImage"] is False
    assert report["okForIG"] is False


def test_analyze_good_image():
    session = _session(_response(_image_bytes((800, 800))))

    report, status = analyze_image("https://cdn.example/a.png", session=session)

    assert status == 200
    assert report["signature"] == "png"
    assert report["okForIG"] is True
    assert report["output"]["width"] == 800


def test_analyze_flags_small_image():
    session = _session(_response(_image_bytes((100, 100))))

    report, status = analyze_image("https://cdn.example/a.png", session=session)

    assert status == 200
    assert report["okForIG"] is False
    assert "smaller than" in report["warning"]


def test_decompression_bomb_is_rejected(monkeypatch):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)

    with pytest.raises(ImageProxyError) as excinfo:
        prepare_for_instagram(_image_bytes((200, 200)))

    assert excinfo.value.status_code == 422
    assert "too large" in str(excinfo.value)


def test_fetch_rejects_declared_oversized_body():
    response = _response(b"x")
    response.headers["Content-Length"] = str(50 * 1024 * 1024)

    with pytest.raises(ImageProxyError) as excinfo:
        fetch_source_image("https://cdn.example/a.png", session=_session(response))

    assert excinfo.value.status_code == 413
    response.iter_content.assert_not_called()
    response.close.assert_called()


def test_fetch_stops_reading_past_the_cap(monkeypatch):
    monkeypatch.setattr(image_proxy, "MAX_DOWNLOAD_BYTES", 10)
    response = _response()
    response.iter_content.return_value = [b"123456", b"789012", b"never read"]

    with pytest.raises(ImageProxyError) as excinfo:
        fetch_source_image("https://cdn.example/a.png", session=_session(response))

    assert excinfo.value.status_code == 413
    response.close.assert_called()


def test_fetch_streams_the_download():
    session = _session(_response(_image_bytes((10, 10))))

    fetch_source_image("https://cdn.example/a.png", session=session)

    assert session.get.call_args.kwargs["stream"] is True
