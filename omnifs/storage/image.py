import io, os

from PIL import Image

#-----------------------------------------------------------------------------

def target_size(size: tuple[int, int], width: int, height: int) -> tuple[int, int]:
    """
    Fit (width, height) inside the box while keeping the aspect ratio

    A 0 dimension is derived from the other one. Images are never enlarged,
    the same way the OSS/OBS "image/resize,m_lfit" pipeline behaves.
    """
    w, h = size
    if w <= 0 or h <= 0:
        return size

    width = max(int(width or 0), 0)
    height = max(int(height or 0), 0)

    if not width and not height:
        return size

    scales = []
    if width:
        scales.append(width / w)
    if height:
        scales.append(height / h)

    scale = min(min(scales), 1.0)

    return max(1, round(w * scale)), max(1, round(h * scale))


def resize_style(width: int, height: int) -> str:
    """OSS/OBS image processing style with the same fit rules"""
    style = "image/resize,m_lfit"
    if width > 0:
        style += f",w_{int(width)}"
    if height > 0:
        style += f",h_{int(height)}"
    return style


def thumbnail_rule(width: int, height: int) -> str:
    """COS imageMogr2 thumbnail rule, one of {w}x{h} {w}x x{h}"""
    rule = "imageMogr2/thumbnail/"
    if width > 0:
        rule += f"{int(width)}x"
    if height > 0:
        rule += f"{int(height)}" if width > 0 else f"x{int(height)}"
    return rule


def format_from_filename(filename: str) -> str | None:
    ext = os.path.splitext(filename or "")[1].lower()
    if not ext:
        return None
    return Image.registered_extensions().get(ext)


def resize_image(content: bytes, width: int, height: int, filename: str = "") -> tuple[bytes, str]:
    """
    Resize image bytes and encode them in the source format

    Args:
        content: Source image bytes
        width: Target width, 0 to scale proportionally
        height: Target height, 0 to scale proportionally
        filename: Source file name, its extension picks the output format

    Returns:
        Tuple of (encoded image, mime type)
    """
    with Image.open(io.BytesIO(content)) as image:
        image_format = format_from_filename(filename) or image.format or "PNG"

        size = target_size(image.size, width, height)
        resized = image.resize(size, Image.Resampling.LANCZOS) if size != image.size else image.copy()

        # JPEG has no alpha channel.
        if image_format == "JPEG" and resized.mode not in ("RGB", "L"):
            resized = resized.convert("RGB")

        output = io.BytesIO()
        resized.save(output, format=image_format)

    mime_type = Image.MIME.get(image_format, "application/octet-stream")

    return output.getvalue(), mime_type

#-----------------------------------------------------------------------------
