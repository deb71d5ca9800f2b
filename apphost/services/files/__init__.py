"""File services"""
from apphost.services.files.upload_cleanup_service import UploadCleanupService

__all__ = ["UploadCleanupService"]
