"""Flask application: REST routes plus Socket.IO progress events."""

from flask import Flask
from flask_socketio import SocketIO

from vidshelf.api.routes import register_library_routes
from vidshelf.api.websocket import WebSocketManager, ws_manager
from vidshelf.config.env import DEBUG
from vidshelf.core.logger import setup_logger
from vidshelf.library.service import LibraryService

logger = setup_logger(__name__)


def create_app(library: LibraryService, manager: WebSocketManager = ws_manager):
    """Build the Flask app and its SocketIO server around ``library``."""
    app = Flask(__name__)
    app.json.sort_keys = False

    socketio = SocketIO(app, cors_allowed_origins="*", async_mode="threading", logger=False, engineio_logger=False)
    manager.init_app(app, socketio)

    @socketio.on("connect")
    def handle_connect(auth=None):
        manager.client_connected()

    @socketio.on("disconnect")
    def handle_disconnect(*_args):
        manager.client_disconnected()

    register_library_routes(app, library, manager)
    logger.debug(f"Application created, DEBUG={DEBUG}")
    return app, socketio


library = LibraryService.from_env()
app, socketio = create_app(library)
