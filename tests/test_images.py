"""Unit tests for Pillow backed photo images."""

import base64

from PIL import Image

from tkbridge.images import Photo, default_icon, encode_png

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


class TestEncodePng:
    """Tests for encode_png."""

    def test_from_image(self):
        data = base64.b64decode(encode_png(Image.new("RGB", (4, 3), "red")))
        assert data.startswith(PNG_SIGNATURE)

    def test_from_path(self, tmp_path):
        path = tmp_path / "icon.png"
        Image.new("RGBA", (2, 2)).save(path)
        data = base64.b64decode(encode_png(path))
        assert data.startswith(PNG_SIGNATURE)

    def test_cmyk_converted(self):
        data = base64.b64decode(encode_png(Image.new("CMYK", (2, 2))))
        assert data.startswith(PNG_SIGNATURE)


class TestPhoto:
    """Tests for Photo."""

    def test_create(self, bridge, fake_tcl):
        photo = Photo(Image.new("RGB", (8, 8)))
        create = next(w for w in fake_tcl.recorded if w[:2] == ["image", "create"])
        assert create[2:4] == ["photo", photo.name]
        assert create[4:6] == ["-format", "png"]
        assert base64.b64decode(create[7]).startswith(PNG_SIGNATURE)
        assert photo.width() == 64

    def test_default_icon(self):
        icon = default_icon(32)
        assert icon.size == (32, 32)
        assert icon.mode == "RGBA"
