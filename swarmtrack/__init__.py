"""BitTorrent tracker announce clients (HTTP and UDP) and piece pickers."""

__version__ = "0.1.0"