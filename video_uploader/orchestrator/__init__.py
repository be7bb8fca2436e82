"""Orchestrator package - coordinates upload workflows."""
from .core import UploadOrchestrator, generate_upload_id
from .models import UploadAttempt, UploadHandle, UploadState

__all__ = ["UploadOrchestrator", "UploadAttempt", "UploadHandle", "UploadState", "generate_upload_id"]
