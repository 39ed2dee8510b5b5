"""Package entry point for `python -m vidshelf`."""

from vidshelf.config.env import DEBUG, FLASK_HOST, FLASK_PORT


def main() -> None:
    from vidshelf.main import app, library, socketio

    library.start()
    try:
        socketio.run(app, host=FLASK_HOST, port=FLASK_PORT, debug=DEBUG, allow_unsafe_werkzeug=True)
    finally:
        library.shutdown(wait=False)


if __name__ == "__main__":
    main()
