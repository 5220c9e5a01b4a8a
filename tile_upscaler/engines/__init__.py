"""Pluggable external capabilities: tile enhancement and image analysis."""
