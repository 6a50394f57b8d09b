import os


# Allowed extensions for upload and reconciliation, with leading dots
ALLOWED_IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.gif', '.webp', '.heic', '.avif'}
ALLOWED_VIDEO_EXTENSIONS = {'.mp4', '.webm', '.ogg', '.mov', '.avi'}
ALL_MEDIA_EXTENSIONS = ALLOWED_IMAGE_EXTENSIONS.union(ALLOWED_VIDEO_EXTENSIONS)


def allowed_file(filename):
    """Checks if a file has an allowed extension."""
    return '.' in filename and \
           os.path.splitext(filename)[1].lower() in ALL_MEDIA_EXTENSIONS

def is_image_file(filename):
    return '.' in filename and \
           os.path.splitext(filename)[1].lower() in ALLOWED_IMAGE_EXTENSIONS

def is_video_file(filename):
    return '.' in filename and \
           os.path.splitext(filename)[1].lower() in ALLOWED_VIDEO_EXTENSIONS

def allowed_mimetype(mimetype):
    """Only image/* and video/* uploads are accepted."""
    mimetype = (mimetype or '').lower()
    return mimetype.startswith('image/') or mimetype.startswith('video/')

def get_media_type(filename):
    """Determines the media type (image or video) from the extension."""
    return 'video' if is_video_file(filename) else 'image'

def media_type_for_mimetype(mimetype, filename=''):
    """Media type as declared by the client, falling back to the extension."""
    mimetype = (mimetype or '').lower()
    if mimetype.startswith('video/'):
        return 'video'
    if mimetype.startswith('image/'):
        return 'image'
    return get_media_type(filename)

def is_safe_filename(name):
    """A bare filename: no separators, no parent references, not hidden."""
    if not name or name in ('.', '..') or name.startswith('.'):
        return False
    return '/' not in name and '\\' not in name and '\x00' not in name

def list_media_files(directory):
    """
    Returns the sorted names of recognized media files directly in `directory`.
    Hidden entries (thumbnail cache, partial uploads) and subfolders are skipped.
    """
    if not os.path.isdir(directory):
        return []
    media_files = []
    for entry in os.listdir(directory):
        if entry.startswith('.') or not allowed_file(entry):
            continue
        if os.path.isfile(os.path.join(directory, entry)):
            media_files.append(entry)
    return sorted(media_files)

def directory_size(directory):
    """Total byte size of the regular files directly in `directory`."""
    total = 0
    if not os.path.isdir(directory):
        return 0
    for entry in os.listdir(directory):
        full_path = os.path.join(directory, entry)
        try:
            if os.path.isfile(full_path):
                total += os.path.getsize(full_path)
        except OSError:
            # File vanished between listdir and stat
            continue
    return total
