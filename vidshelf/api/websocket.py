"""WebSocket manager for real-time download progress and library updates."""

import threading
from typing import Any, Dict, Optional

from flask_socketio import SocketIO

from vidshelf.core.logger import setup_logger
from vidshelf.download.orchestrator import DownloadTask

logger = setup_logger(__name__)


class WebSocketManager:
    """Tracks Socket.IO connections and broadcasts download events."""

    def __init__(self):
        self.socketio: Optional[SocketIO] = None
        self._enabled = False
        self._connection_count = 0
        self._connection_lock = threading.Lock()

    def init_app(self, app, socketio: SocketIO):
        """Initialize the WebSocket manager with Flask-SocketIO instance."""
        self.socketio = socketio
        self._enabled = True
        logger.info("WebSocket manager initialized")

    def client_connected(self):
        """Track a new client connection. Call this from the connect event handler."""
        with self._connection_lock:
            self._connection_count += 1
            current_count = self._connection_count
        logger.debug(f"Client connected. Active connections: {current_count}")

    def client_disconnected(self):
        """Track a client disconnection. Call this from the disconnect event handler."""
        with self._connection_lock:
            self._connection_count = max(0, self._connection_count - 1)
            current_count = self._connection_count
        logger.debug(f"Client disconnected. Active connections: {current_count}")

    def get_connection_count(self) -> int:
        with self._connection_lock:
            return self._connection_count

    def has_active_connections(self) -> bool:
        return self.get_connection_count() > 0

    def is_enabled(self) -> bool:
        """Check if WebSocket is enabled and ready."""
        return self._enabled and self.socketio is not None

    def broadcast_download_event(self, download_id: str, event: Dict[str, Any]):
        """Broadcast one progress event of a download to all clients."""
        if not self.is_enabled():
            return

        try:
            self.socketio.emit('download_progress', {'download_id': download_id, **event})
        except Exception as e:
            logger.error(f"Error broadcasting progress for download {download_id}: {e}")

    def broadcast_library_update(self, action: str, video_id: str, video: Optional[Dict[str, Any]] = None):
        """Tell clients a video was added to or removed from the library."""
        if not self.is_enabled():
            return

        try:
            data: Dict[str, Any] = {'action': action, 'id': video_id}
            if video is not None:
                data['video'] = video
            self.socketio.emit('library_update', data)
            logger.debug(f"Broadcasted library update: {action} {video_id}")
        except Exception as e:
            logger.error(f"Error broadcasting library update: {e}")

    def relay_progress(self, task: DownloadTask):
        """Forward a task's progress stream to clients until it closes.

        Blocks; run it as a background task.
        """
        for event in task.progress:
            payload = event.to_dict()
            self.broadcast_download_event(task.task_id, payload)
            if event.type == 'complete' and task.progress.entry is not None:
                self.broadcast_library_update('added', task.progress.entry.id, payload.get('video'))
        logger.debug(f"Progress relay finished for download {task.task_id}")

    def start_relay(self, task: DownloadTask):
        """Start ``relay_progress`` in the background."""
        if self.is_enabled():
            self.socketio.start_background_task(self.relay_progress, task)
        else:
            thread = threading.Thread(
                target=self.relay_progress,
                args=(task,),
                daemon=True,
                name=f"ProgressRelay-{task.task_id[:8]}",
            )
            thread.start()


# Global WebSocket manager instance
ws_manager = WebSocketManager()
