"""ImmichSync - Bidirectional asset sync between a local folder and an Immich server."""

__version__ = "0.1.0"
