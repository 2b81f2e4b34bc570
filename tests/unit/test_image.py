"""Unit tests for cover image helpers."""

import io

import pytest
from PIL import Image, UnidentifiedImageError

from omnifs.storage.image import format_from_filename, resize_image, resize_style, target_size, thumbnail_rule


@pytest.mark.unit
class TestTargetSize:
    """Fit-inside-the-box sizing."""

    def test_width_only_scales_height(self):
        assert target_size((200, 100), 100, 0) == (100, 50)

    def test_height_only_scales_width(self):
        assert target_size((200, 100), 0, 50) == (100, 50)

    def test_both_dimensions_fit_inside(self):
        assert target_size((200, 100), 50, 50) == (50, 25)

    def test_zero_box_keeps_size(self):
        assert target_size((200, 100), 0, 0) == (200, 100)

    def test_never_enlarges(self):
        assert target_size((200, 100), 400, 400) == (200, 100)

    def test_never_below_one_pixel(self):
        assert target_size((1000, 1), 10, 0) == (10, 1)


@pytest.mark.unit
class TestResizeStyle:
    def test_width_and_height(self):
        assert resize_style(100, 50) == "image/resize,m_lfit,w_100,h_50"

    def test_width_only(self):
        assert resize_style(100, 0) == "image/resize,m_lfit,w_100"

    def test_height_only(self):
        assert resize_style(0, 80) == "image/resize,m_lfit,h_80"


@pytest.mark.unit
@pytest.mark.parametrize(
    "width, height, expected",
    [
        (200, 100, "imageMogr2/thumbnail/200x100"),
        (200, 0, "imageMogr2/thumbnail/200x"),
        (0, 100, "imageMogr2/thumbnail/x100"),
    ],
)
def test_thumbnail_rule(width, height, expected):
    assert thumbnail_rule(width, height) == expected


@pytest.mark.unit
class TestResizeImage:
    def test_png_keeps_format(self, sample_png):
        data, mime_type = resize_image(sample_png, 100, 0, "a.png")

        assert mime_type == "image/png"
        with Image.open(io.BytesIO(data)) as img:
            assert img.format == "PNG"
            assert img.size == (100, 50)

    def test_format_follows_extension(self, sample_png):
        data, mime_type = resize_image(sample_png, 50, 50, "thumb.jpg")

        assert mime_type == "image/jpeg"
        with Image.open(io.BytesIO(data)) as img:
            assert img.format == "JPEG"
            assert img.size == (50, 25)

    def test_rgba_to_jpeg_drops_alpha(self, sample_rgba_png):
        data, _ = resize_image(sample_rgba_png, 10, 10, "thumb.jpeg")

        with Image.open(io.BytesIO(data)) as img:
            assert img.mode == "RGB"

    def test_detected_format_without_extension(self, sample_jpeg):
        data, mime_type = resize_image(sample_jpeg, 30, 0, "no_extension")

        assert mime_type == "image/jpeg"
        with Image.open(io.BytesIO(data)) as img:
            assert img.size == (30, 30)

    def test_not_an_image(self):
        with pytest.raises(UnidentifiedImageError):
            resize_image(b"plain text", 10, 10, "a.png")


@pytest.mark.unit
def test_format_from_filename():
    assert format_from_filename("a.PNG") == "PNG"
    assert format_from_filename("a.jpg") == "JPEG"
    assert format_from_filename("a") is None
