"""Whole-image semantic analysis."""
