"""mongo-notify: real-time MongoDB change fan-out over WebSockets."""

__version__ = "0.1.0"
