import os

import cv2 # Video frame grabbing
import numpy as np
from loguru import logger
from PIL import Image, ImageOps
from pillow_heif import register_heif_opener

from media import is_image_file, is_video_file


# Lets Pillow's Image.open() read HEIC uploads
register_heif_opener()

THUMBNAIL_SUBFOLDER_NAME = '.thumbnails' # Hidden directory inside uploads
THUMBNAIL_MAX_DIMENSION = 480 # Max width or height for thumbnails


def thumbnail_path(context, file_id):
    """Generates the expected full path for a thumbnail."""
    base_name = os.path.splitext(file_id)[0]
    return os.path.join(context.uploads_dir, THUMBNAIL_SUBFOLDER_NAME, f"{base_name}.webp")


def _first_video_frame(path):
    cap = cv2.VideoCapture(path)
    try:
        if not cap.isOpened():
            logger.error(f"Could not open video {path}")
            return None
        ok, frame = cap.read()
        if not ok or not isinstance(frame, np.ndarray):
            logger.error(f"Could not read frame from video {path}")
            return None
        # OpenCV frames are BGR
        return Image.fromarray(cv2.cvtColor(frame, cv2.COLOR_BGR2RGB))
    finally:
        cap.release()


def _open_image(path):
    try:
        img = Image.open(path)
        img.load()
    except (OSError, ValueError) as e:
        logger.error(f"Pillow failed to open {path}: {type(e).__name__}: {e}")
        return None
    # Apply EXIF orientation
    return ImageOps.exif_transpose(img)


def generate_thumbnail(context, file_id):
    """
    Returns the path of an up-to-date WEBP thumbnail for a stored file, generating it
    when missing or older than the source. None if the file can't be rendered.
    """
    source_path = context.upload_path(file_id)
    if not os.path.isfile(source_path):
        return None
    target_path = thumbnail_path(context, file_id)

    if os.path.exists(target_path) and os.path.getmtime(target_path) >= os.path.getmtime(source_path):
        return target_path

    if is_video_file(file_id):
        img = _first_video_frame(source_path)
    elif is_image_file(file_id):
        img = _open_image(source_path)
    else:
        return None
    if img is None:
        return None

    try:
        if img.mode != 'RGB':
            img = img.convert('RGB')
        img.thumbnail((THUMBNAIL_MAX_DIMENSION, THUMBNAIL_MAX_DIMENSION), Image.Resampling.LANCZOS)
        os.makedirs(os.path.dirname(target_path), exist_ok=True)
        img.save(target_path, "WEBP", quality=85)
    except (OSError, ValueError) as e:
        logger.error(f"Error generating thumbnail for {file_id}: {type(e).__name__}: {e}")
        return None
    return target_path


def remove_thumbnail(context, file_id):
    path = thumbnail_path(context, file_id)
    try:
        if os.path.exists(path):
            os.remove(path)
    except OSError as e:
        logger.warning(f"Could not remove thumbnail {path}: {e}")
