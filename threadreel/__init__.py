"""threadreel - turn Reddit threads into short vertical videos."""

__version__ = "1.0.0"
