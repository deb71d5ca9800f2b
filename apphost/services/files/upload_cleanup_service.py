"""Upload directory housekeeping"""

import os
from datetime import datetime, timedelta
from typing import Optional

from loguru import logger


class UploadCleanupService:
    """Removes stale files from the upload scratch directory (`UPLOAD_DIR/tmp`)."""

    def __init__(self, temp_dir: str, max_age_hours: int = 24):
        self.temp_dir = temp_dir
        self.max_age_hours = max_age_hours

    async def cleanup_temp_files(self, max_age_hours: Optional[int] = None) -> dict:
        """Delete files older than `max_age_hours`; subdirectories are left alone."""
        if max_age_hours is None:
            max_age_hours = self.max_age_hours

        if not os.path.isdir(self.temp_dir):
            logger.debug(f"Upload temp directory does not exist: {self.temp_dir}")
            return {"cleaned": 0, "failed": 0, "total_size": 0}

        cutoff_time = datetime.now() - timedelta(hours=max_age_hours)
        cleaned_count = 0
        failed_count = 0
        total_size = 0

        for filename in os.listdir(self.temp_dir):
            file_path = os.path.join(self.temp_dir, filename)

            if not os.path.isfile(file_path):
                continue

            try:
                mtime = datetime.fromtimestamp(os.path.getmtime(file_path))
                if mtime < cutoff_time:
                    file_size = os.path.getsize(file_path)
                    os.remove(file_path)
                    cleaned_count += 1
                    total_size += file_size
                    logger.debug(f"Removed {filename} ({file_size} bytes)")
            except OSError as e:
                logger.warning(f"Failed to remove {filename}: {e}")
                failed_count += 1

        if cleaned_count > 0:
            logger.info(
                f"Removed {cleaned_count} stale upload files, "
                f"freed {total_size / 1024 / 1024:.2f}MB"
            )

        return {
            "cleaned": cleaned_count,
            "failed": failed_count,
            "total_size": total_size
        }
