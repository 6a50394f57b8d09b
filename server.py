
######## YOUR SETUP #############

PORT = 3000 # Flask server port number
MEDIA_ROOT = './data' # metadata, uploads/ and backups/ live here; must be writable by whoever starts server.py

#################################


import os
import time

from flask import Flask, request, jsonify, send_from_directory, send_file
from loguru import logger
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

import archive
import backups
import ingest
import library
import thumbnails
from items import MediaError
from log_setup import init_logging
from media import is_safe_filename
from reconciler import startup_sync
from storage_context import StorageContext


def _error(message, status):
    return jsonify({"error": message}), status


def _form_value(name):
    value = request.form.get(name)
    return value.strip() if isinstance(value, str) and value.strip() else None


def create_app(context=None):
    """Builds the Flask app around one storage context and reconciles it."""
    if context is None:
        context = StorageContext.from_root(os.environ.get('MEDIA_ROOT', MEDIA_ROOT))

    app = Flask(__name__)
    # Leave headroom for the multipart envelope; the exact limit is enforced while streaming
    app.config['MAX_CONTENT_LENGTH'] = context.max_upload_bytes + 1024 * 1024
    app.config['STORAGE_CONTEXT'] = context

    startup_sync(context)
    scheduler = backups.BackupScheduler(context)
    started_at = time.monotonic()

    @app.errorhandler(MediaError)
    def handle_media_error(e):
        return _error(str(e), e.status_code)

    @app.errorhandler(RequestEntityTooLarge)
    def handle_too_large(e):
        return _error(f"File too large (limit {context.max_upload_bytes // (1024 * 1024)} MB)", 413)

    # --- Media ---

    @app.route('/uploads/<path:filename>')
    def get_upload(filename):
        """Serves stored media files."""
        if not is_safe_filename(filename):
            return _error("Forbidden", 403)
        return send_from_directory(context.uploads_dir, filename)

    @app.route('/api/images')
    def get_images():
        """Returns individual items and group summaries, newest first."""
        try:
            return jsonify({"images": library.list_media(context)})
        except Exception:
            logger.exception("Failed to load images")
            return _error("Failed to load images", 500)

    @app.route('/api/upload', methods=['POST'])
    def upload():
        """Handles a single file upload (field 'image', or 'file')."""
        file = request.files.get('image') or request.files.get('file')
        if file is None or not file.filename:
            return _error("No file provided", 400)

        item = ingest.ingest(
            context,
            file.stream,
            file.filename,
            file.mimetype,
            category=_form_value('category'),
            description=request.form.get('description', ''),
            group_id=_form_value('groupId'),
        )
        with context.lock:
            scheduler.record_upload()
        return jsonify(item.to_json())

    @app.route('/api/upload-link', methods=['POST'])
    def upload_link():
        """Registers an external video link (YouTube, Google Drive, anything else)."""
        data = request.get_json(silent=True) or {}
        group_id = data.get('groupId')
        link = ingest.ingest_link(
            context,
            data.get('url'),
            category=data.get('category') if isinstance(data.get('category'), str) else None,
            description=data.get('description') if isinstance(data.get('description'), str) else '',
            group_id=group_id if isinstance(group_id, str) and group_id else None,
        )
        return jsonify(link.to_json())

    @app.route('/api/thumbnail/<item_id>')
    def get_thumbnail(item_id):
        """Serves a cached thumbnail for a stored image or video."""
        if not is_safe_filename(item_id) or not os.path.isfile(context.upload_path(item_id)):
            return _error("File not found", 404)
        path = thumbnails.generate_thumbnail(context, item_id)
        if not path:
            return _error("Thumbnail generation failed or unsupported type", 500)
        return send_from_directory(os.path.dirname(path), os.path.basename(path), mimetype='image/webp')

    @app.route('/api/images/<item_id>', methods=['DELETE'])
    def delete_image(item_id):
        """Deletes a stored file, an external link, or a whole group."""
        return jsonify(library.delete_item(context, item_id))

    # --- Groups ---

    @app.route('/api/groups/<group_id>')
    def get_group(group_id):
        return jsonify(library.get_group(context, group_id))

    @app.route('/api/groups/<group_id>/title', methods=['PUT'])
    def update_group_title(group_id):
        data = request.get_json(silent=True) or {}
        return jsonify(library.set_group_title(context, group_id, data.get('titleImageId')))

    @app.route('/api/groups/<group_id>/order', methods=['PUT'])
    def update_group_order(group_id):
        data = request.get_json(silent=True) or {}
        return jsonify(library.set_group_order(context, group_id, data.get('fileOrder')))

    @app.route('/api/groups/<group_id>/download')
    def download_group(group_id):
        """Streams the group's members as a zip, numbered in display order."""
        fileobj, download_name = archive.export_group_zip(context, group_id)
        return send_file(fileobj, mimetype='application/zip', as_attachment=True, download_name=download_name)

    # --- Storage, backups, health ---

    @app.route('/api/storage')
    def get_storage():
        return jsonify(library.storage_usage(context))

    @app.route('/api/backup', methods=['POST'])
    def create_backup():
        with context.lock:
            info = backups.create_backup(context)
        return jsonify({"message": "Backup created successfully", "backup": info})

    @app.route('/api/backups')
    def get_backups():
        return jsonify({"backups": backups.list_backups(context)})

    @app.route('/api/restore/<backup_name>', methods=['POST'])
    def restore_backup(backup_name):
        with context.lock:
            result = backups.restore_backup(context, backup_name)
        return jsonify(dict(result, message=f"Backup '{backup_name}' restored successfully"))

    @app.route('/api/health')
    def health():
        """Health check for hosting platforms; degraded still answers 200."""
        try:
            return jsonify(library.health_report(context, started_at))
        except Exception as e:
            logger.exception("Health check failed")
            return jsonify({"status": "error", "message": str(e)}), 500

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return _error(e.description, e.code)

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        logger.exception(f"Unhandled error on {request.method} {request.path}")
        return _error("Internal server error", 500)

    return app


if __name__ == '__main__':
    init_logging(os.environ.get('LOG_DIR'))
    port = int(os.environ.get('PORT', PORT))
    app = create_app()
    context = app.config['STORAGE_CONTEXT']
    logger.info(f"Server running on http://localhost:{port}")
    logger.info(f"Media persists to: {context.uploads_dir}")
    logger.info(f"Metadata persists to: {context.metadata_file}")
    app.run(host='0.0.0.0', port=port)
