"""Utilities for video_uploader module."""
