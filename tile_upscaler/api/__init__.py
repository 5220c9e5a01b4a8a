"""HTTP API for the tile upscaler."""
