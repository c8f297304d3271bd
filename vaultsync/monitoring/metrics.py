"""Prometheus metrics for the reconciliation engine"""

import time

from prometheus_client import Counter, Gauge, Histogram


# Upload metrics
media_uploads_total = Counter(
    'vaultsync_media_uploads_total',
    'Media upload attempts by outcome',
    ['media_type', 'outcome']
)

media_upload_duration_seconds = Histogram(
    'vaultsync_media_upload_duration_seconds',
    'Time spent uploading one media asset',
    ['media_type'],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0]
)

fallback_uploads_total = Counter(
    'vaultsync_fallback_uploads_total',
    'In-memory fallback uploads after a failed streaming upload',
    ['status']
)

# Retry queue metrics
upload_retry_queue_size = Gauge(
    'vaultsync_upload_retry_queue_size',
    'Number of entries in the storage upload retry queue'
)

# Public feed fan-out metrics
public_feed_posts_total = Counter(
    'vaultsync_public_feed_posts_total',
    'Public media post changes made by visibility fan-out',
    ['change']
)

# Sync pass metrics
sync_passes_total = Counter(
    'vaultsync_sync_passes_total',
    'Pull-side sync passes by outcome',
    ['pass_name', 'status']
)

side_effect_failures_total = Counter(
    'vaultsync_side_effect_failures_total',
    'Best-effort side calls that failed',
    ['kind']
)


class MetricsCollector:
    """Thin recording layer over the module-level metrics"""

    def record_upload(self, media_type: str, outcome: str, duration_seconds: float = None):
        """Record a media upload outcome"""
        media_uploads_total.labels(media_type=media_type, outcome=outcome).inc()
        if duration_seconds is not None:
            media_upload_duration_seconds.labels(media_type=media_type).observe(duration_seconds)

    def record_fallback_upload(self, success: bool):
        """Record a fallback upload"""
        status = "success" if success else "failure"
        fallback_uploads_total.labels(status=status).inc()

    def record_retry_queue_size(self, size: int):
        upload_retry_queue_size.set(size)

    def record_feed_summary(self, summary):
        """Record the counts of a visibility fan-out summary"""
        for change in ("inserted", "republished", "updated_published", "unpublished", "skipped_removed"):
            count = getattr(summary, change, 0)
            if count:
                public_feed_posts_total.labels(change=change).inc(count)

    def record_sync_pass(self, pass_name: str, status: str):
        sync_passes_total.labels(pass_name=pass_name, status=status).inc()

    def record_side_effect_failure(self, kind: str):
        side_effect_failures_total.labels(kind=kind).inc()


# Global metrics collector instance
metrics_collector = MetricsCollector()


class MetricsTimer:
    """Context manager for timing operations"""

    def __init__(self, callback):
        self.callback = callback
        self.start_time = None

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = time.time() - self.start_time
        self.callback(duration)
        return False
