"""Background workers"""

from vaultsync.workers.upload_retry_queue import StorageUploadRetryQueue

__all__ = ["StorageUploadRetryQueue"]
