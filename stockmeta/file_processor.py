import io
import logging
import mimetypes
import os
from pathlib import Path

import tqdm
from PIL import Image, ImageDraw, UnidentifiedImageError

from stockmeta.config import CONFIG
from stockmeta.errors import PreprocessingError
from stockmeta.models import ERROR, READY, EncodedPayload, WorkItem

logger = logging.getLogger(__name__)

RASTER_TYPES = ("image/jpeg", "image/png", "image/gif")
PLACEHOLDER_TYPES = ("image/svg+xml", "application/postscript", "application/pdf")

mimetypes.add_type("application/postscript", ".eps")
mimetypes.add_type("application/postscript", ".ai")
mimetypes.add_type("image/svg+xml", ".svg")


def guess_mime_type(path):
    mime_type, _ = mimetypes.guess_type(str(path))
    return mime_type or "application/octet-stream"


def is_supported(path):
    return guess_mime_type(path) in CONFIG["supported_mime_types"]


def _flatten_on_white(img):
    """Paste an image with transparency onto a white RGB canvas"""
    rgba = img.convert("RGBA")
    background = Image.new("RGB", rgba.size, (255, 255, 255))
    background.paste(rgba, mask=rgba.split()[3])
    return background


def compress_image(path, mime_type, max_width, quality=None):
    """Downscale to max_width; PNG keeps transparency, everything else becomes JPEG"""
    quality = quality or CONFIG["jpeg_quality"]
    try:
        with Image.open(path) as img:
            img.load()
            if img.width > max_width:
                height = max(1, round(img.height * max_width / img.width))
                img = img.resize((max_width, height), Image.Resampling.LANCZOS)

            output = io.BytesIO()
            if mime_type == "image/png":
                img.save(output, format="PNG")
                return output.getvalue(), "image/png"
            _flatten_on_white(img).save(output, format="JPEG", quality=quality)
            return output.getvalue(), "image/jpeg"
    except (OSError, UnidentifiedImageError) as e:
        raise PreprocessingError(f"Could not read image {Path(path).name}: {e}") from e


def placeholder_image(label, size, quality=50):
    """White JPEG with a centered label, used where no rasterizer exists"""
    img = Image.new("RGB", (size, size), (255, 255, 255))
    draw = ImageDraw.Draw(img)
    left, top, right, bottom = draw.textbbox((0, 0), label)
    x = (size - (right - left)) / 2
    y = (size - (bottom - top)) / 2
    draw.text((x, y), label, fill=(51, 51, 51))
    output = io.BytesIO()
    img.save(output, format="JPEG", quality=quality)
    return output.getvalue()


def generate_thumbnail(path, mime_type=None):
    mime_type = mime_type or guess_mime_type(path)
    max_width = CONFIG["thumbnail_max_width"]
    if mime_type in RASTER_TYPES:
        data, _ = compress_image(path, mime_type, max_width)
        return data
    if mime_type in PLACEHOLDER_TYPES or mime_type.startswith("video/"):
        ext = Path(path).suffix.lstrip(".").upper() or "Vector"
        return placeholder_image(ext, max_width)
    raise PreprocessingError("Unsupported file type for thumbnail generation.")


def process_file_for_api(path, mime_type=None):
    """Compact payload sent to the model alongside the prompt"""
    mime_type = mime_type or guess_mime_type(path)
    if mime_type in RASTER_TYPES:
        data, payload_type = compress_image(path, mime_type, CONFIG["api_max_width"])
        return EncodedPayload(data=data, mime_type=payload_type)
    if mime_type.startswith("video/"):
        return EncodedPayload(data=placeholder_image("Video File", 100), mime_type="image/jpeg")
    if mime_type in PLACEHOLDER_TYPES:
        return EncodedPayload(data=placeholder_image("Vector File", 100), mime_type="image/jpeg")
    raise PreprocessingError("Unsupported file type for API processing.")


def prepare_file(path):
    """Build a WorkItem; failures leave it staged with status error"""
    path = Path(path)
    item = WorkItem(filename=path.name, source_mtime=os.path.getmtime(path))
    try:
        item.thumbnail = generate_thumbnail(path)
        item.payload = process_file_for_api(path)
        item.status = READY
    except PreprocessingError as e:
        logger.error("Processing error for %s: %s", path.name, e)
        item.status = ERROR
    return item


def get_media_files(folder_path):
    """Get all supported media files from folder"""
    media_files = []
    all_files = sorted(os.listdir(folder_path))
    for file_name in tqdm.tqdm(all_files, desc="Scanning files", unit="file"):
        file_path = Path(folder_path) / file_name
        if not file_path.is_file():
            continue
        if is_supported(file_path):
            media_files.append(file_path)
        else:
            logger.warning('Unsupported file type: "%s"', file_name)
    return media_files


def stage_files(paths, staged=()):
    """Prepare new files, skipping ones already staged with the same name and mtime"""
    seen = {(item.filename, item.source_mtime) for item in staged}
    new_items = []
    for path in tqdm.tqdm(list(paths), desc="Preparing", unit="file"):
        path = Path(path)
        key = (path.name, os.path.getmtime(path))
        if key in seen:
            continue
        seen.add(key)
        new_items.append(prepare_file(path))
    return new_items
