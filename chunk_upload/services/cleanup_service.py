# services/cleanup_service.py
import asyncio
import logging
from datetime import datetime
from typing import List

from chunk_upload.config import UploadConfig
from chunk_upload.services.upload_service import UploadService

logger = logging.getLogger(__name__)


class CleanupService:
    def __init__(self, config: UploadConfig):
        self.config = config
        self.upload_service = UploadService(config)

    async def start_cleanup_scheduler(self):
        """Start the cleanup scheduler"""
        while True:
            try:
                await asyncio.to_thread(self.cleanup_stale_uploads)

                await asyncio.sleep(self.config.cleanup_interval.total_seconds())

            except asyncio.CancelledError:
                logger.info("Cleanup scheduler cancelled")
                break
            except Exception as e:
                logger.error(f"Error in cleanup scheduler: {e}")
                await asyncio.sleep(60)  # Wait 1 minute before retrying

    def cleanup_stale_uploads(self) -> List[str]:
        """Remove staging directories that haven't received a chunk within the TTL"""
        cutoff = datetime.now() - self.config.stale_upload_ttl
        removed = []

        for upload in self.upload_service.get_active_uploads():
            if upload.last_modified >= cutoff:
                continue

            try:
                self.upload_service.abort_upload(upload.upload_id)
                removed.append(upload.upload_id)
                age_hours = (datetime.now() - upload.last_modified).total_seconds() / 3600
                logger.info(f"Removed stale upload {upload.upload_id} (idle {age_hours:.1f}h)")
            except Exception as e:
                logger.error(f"Failed to remove stale upload {upload.upload_id}: {e}")

        logger.info(f"Stale upload cleanup completed. Removed {len(removed)} uploads")
        return removed
