"""Uploaded image filtering, resizing and storage.

User photos are center-cropped to 500x500 and tour images to 2000x1333,
both re-encoded as JPEG at quality 90 and written under `IMAGE_ROOT`
(`<static>/img` when unset). Functions return the stored file names so the
caller can merge them into the document update.
"""

from __future__ import annotations

import io
import logging
import os
import time
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from flask import current_app
from PIL import Image, ImageOps, UnidentifiedImageError
from werkzeug.datastructures import FileStorage

from backend.tourbook.errors import ValidationError

logger = logging.getLogger(__name__)

USER_PHOTO_SIZE = (500, 500)
TOUR_IMAGE_SIZE = (2000, 1333)
MAX_TOUR_IMAGES = 3
JPEG_QUALITY = 90
NOT_AN_IMAGE = "Not an image! Please upload only images."


def image_root() -> str:
    root = current_app.config.get('IMAGE_ROOT')
    if root:
        return root
    return os.path.join(current_app.static_folder, 'img')


def ensure_image(upload: FileStorage) -> None:
    if not (upload.mimetype or '').startswith('image/'):
        raise ValidationError(NOT_AN_IMAGE)


def to_jpeg(data: bytes, size: Tuple[int, int]) -> bytes:
    """Center-crop and resize `data` to `size`, returning JPEG bytes."""
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError):
        raise ValidationError(NOT_AN_IMAGE)

    if img.mode in ('RGBA', 'LA') or (img.mode == 'P' and 'transparency' in img.info):
        img = img.convert('RGBA')
        background = Image.new('RGB', img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[3])
        img = background
    elif img.mode != 'RGB':
        img = img.convert('RGB')

    fitted = ImageOps.fit(img, size, method=Image.Resampling.LANCZOS)
    output = io.BytesIO()
    fitted.save(output, format='JPEG', quality=JPEG_QUALITY)
    return output.getvalue()


def _store(subdir: str, filename: str, data: bytes) -> str:
    directory = os.path.join(image_root(), subdir)
    os.makedirs(directory, exist_ok=True)
    with open(os.path.join(directory, filename), 'wb') as fh:
        fh.write(data)
    logger.debug("Stored image %s/%s (%d bytes)", subdir, filename, len(data))
    return filename


def _timestamp_ms() -> int:
    return int(time.time() * 1000)


def resize_user_photo(upload: FileStorage, user_id: Any) -> str:
    ensure_image(upload)
    filename = f"user-{user_id}-{_timestamp_ms()}.jpeg"
    return _store('users', filename, to_jpeg(upload.read(), USER_PHOTO_SIZE))


def resize_tour_images(
    tour_id: Any,
    cover: Optional[FileStorage],
    images: Sequence[FileStorage],
) -> Dict[str, Any]:
    """Process a cover plus gallery upload.

    Returns `{'imageCover': name, 'images': [names]}`, or an empty dict when
    either the cover or the gallery is missing.
    """
    if cover is None or not images:
        return {}
    if len(images) > MAX_TOUR_IMAGES:
        raise ValidationError(f"You can upload at most {MAX_TOUR_IMAGES} tour images")
    for upload in (cover, *images):
        ensure_image(upload)

    stamp = _timestamp_ms()
    cover_name = _store(
        'tours',
        f"tour-{tour_id}-{stamp}-cover.jpeg",
        to_jpeg(cover.read(), TOUR_IMAGE_SIZE),
    )
    names: List[str] = []
    for index, upload in enumerate(images, start=1):
        names.append(_store(
            'tours',
            f"tour-{tour_id}-{stamp}-{index}.jpeg",
            to_jpeg(upload.read(), TOUR_IMAGE_SIZE),
        ))
    return {'imageCover': cover_name, 'images': names}


def discard_images(subdir: str, names: Iterable[Optional[str]]) -> None:
    """Delete stored images whose document update did not go through."""
    directory = os.path.join(image_root(), subdir)
    for name in names:
        if not name:
            continue
        try:
            os.remove(os.path.join(directory, name))
        except FileNotFoundError:
            continue
        logger.debug("Discarded image %s/%s", subdir, name)
