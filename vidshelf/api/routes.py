"""Library and download API routes."""

from __future__ import annotations

import os
from typing import Any

from flask import Flask, jsonify, request, send_file

from vidshelf.api.websocket import WebSocketManager
from vidshelf.core.errors import EntryNotFoundError, LibraryError
from vidshelf.core.logger import setup_logger
from vidshelf.library.service import LibraryService

logger = setup_logger(__name__)

_STATUS_BY_KIND = {
    "validation": 400,
    "path_traversal": 400,
    "not_found": 404,
    "busy": 503,
}

_THUMBNAIL_MIMETYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
}


def error_response(error: LibraryError):
    status = _STATUS_BY_KIND.get(error.kind, 500)
    body: dict[str, Any] = {"error": error.message, "kind": error.kind}
    if error.detail:
        body["detail"] = error.detail
    if status >= 500:
        logger.error(f"{error.kind}: {error.message}")
    return jsonify(body), status


def thumbnail_mimetype(path: str) -> str:
    return _THUMBNAIL_MIMETYPES.get(os.path.splitext(path)[1].lower(), "image/jpeg")


def _list_directory(library: LibraryService, directory: str) -> list[dict[str, Any]]:
    items = []
    with os.scandir(directory) as entries:
        for item in sorted(entries, key=lambda e: e.name):
            if item.name == library.metadata_filename:
                continue
            try:
                stat = item.stat()
            except OSError:
                continue
            items.append({
                "name": item.name,
                "path": os.path.relpath(item.path, library.library_dir),
                "is_dir": item.is_dir(),
                "size": 0 if item.is_dir() else stat.st_size,
                "modified": int(stat.st_mtime),
            })
    return items


def register_library_routes(
    app: Flask,
    library: LibraryService,
    ws_manager: WebSocketManager | None = None,
) -> None:
    """Register video, file and download routes."""

    @app.errorhandler(LibraryError)
    def handle_library_error(error: LibraryError):
        return error_response(error)

    @app.route("/api/health", methods=["GET"])
    def api_health():
        return jsonify({
            "status": "ok",
            "videos": len(library.store),
            "downloads": sum(1 for task in library.list_downloads() if task.active),
        })

    # Videos

    @app.route("/api/videos", methods=["GET"])
    def api_list_videos():
        entries = library.list_entries(
            query=request.args.get("q", "").strip() or None,
            sort=request.args.get("sort"),
        )
        return jsonify([entry.to_api_dict() for entry in entries])

    @app.route("/api/videos/<video_id>", methods=["GET"])
    def api_get_video(video_id: str):
        entry = library.get_entry(video_id)
        if entry is None:
            raise EntryNotFoundError(f"Video not found: {video_id}")
        data = entry.to_api_dict()
        data["relative_path"] = entry.relative_path(library.library_dir)
        return jsonify(data)

    @app.route("/api/videos/<video_id>", methods=["DELETE"])
    def api_delete_video(video_id: str):
        entry = library.delete_entry(video_id)
        if ws_manager is not None:
            ws_manager.broadcast_library_update("deleted", entry.id)
        return jsonify({"success": True, "id": entry.id})

    @app.route("/api/videos/<video_id>/file", methods=["GET"])
    def api_video_file(video_id: str):
        path = library.resolve_entry_file(video_id)
        return send_file(path, as_attachment=True, download_name=os.path.basename(path))

    @app.route("/api/videos/<video_id>/thumbnail", methods=["GET"])
    def api_video_thumbnail(video_id: str):
        path = library.resolve_entry_file(video_id, thumbnail=True)
        return send_file(path, mimetype=thumbnail_mimetype(path))

    # Raw library files

    @app.route("/api/files/", defaults={"relative_path": ""}, methods=["GET"])
    @app.route("/api/files/<path:relative_path>", methods=["GET"])
    def api_library_file(relative_path: str):
        path = library.resolve_library_path(relative_path)
        if os.path.isdir(path):
            return jsonify(_list_directory(library, path))
        if not os.path.isfile(path):
            raise EntryNotFoundError(f"File not found: {relative_path}")
        return send_file(path, as_attachment=True, download_name=os.path.basename(path))

    # Downloads

    @app.route("/api/downloads", methods=["POST"])
    def api_submit_download():
        data = request.get_json(silent=True) or {}
        url = data.get("url") if isinstance(data, dict) else None
        task = library.submit_download(url if isinstance(url, str) else "")
        if ws_manager is not None:
            ws_manager.start_relay(task)
        return jsonify({"download_id": task.task_id, "status": task.status}), 202

    @app.route("/api/downloads", methods=["GET"])
    def api_list_downloads():
        return jsonify([task.to_dict() for task in library.list_downloads()])

    @app.route("/api/downloads/<download_id>", methods=["GET"])
    def api_get_download(download_id: str):
        task = library.get_download(download_id)
        if task is None:
            raise EntryNotFoundError(f"Download not found: {download_id}")
        return jsonify(task.to_dict())

    @app.route("/api/downloads/<download_id>", methods=["DELETE"])
    def api_cancel_download(download_id: str):
        if library.get_download(download_id) is None:
            raise EntryNotFoundError(f"Download not found: {download_id}")
        cancelled = library.cancel_download(download_id)
        return jsonify({"success": cancelled, "download_id": download_id})
