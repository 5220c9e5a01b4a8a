"""Tile enhancement capabilities (local OpenCV, remote Nano Banana)."""
