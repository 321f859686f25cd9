# filevault/monitoring/metrics.py
from datetime import datetime
import platform

from prometheus_client import Counter, Histogram, Info
from prometheus_fastapi_instrumentator import Instrumentator

# Business Metrics
upload_completed = Counter(
    'filevault_upload_completed_total',
    'Total number of uploads by outcome',
    ['status']
)

upload_bytes = Histogram(
    'filevault_upload_size_bytes',
    'Size of accepted uploads in bytes',
    buckets=(1024, 64 * 1024, 1024 * 1024, 8 * 1024 * 1024, 32 * 1024 * 1024, 64 * 1024 * 1024)
)

download_urls_issued = Counter(
    'filevault_download_urls_issued_total',
    'Total number of presigned download URLs issued',
    ['disposition']
)

files_deleted = Counter(
    'filevault_files_deleted_total',
    'Total number of file deletions',
    ['mode']
)

auth_events = Counter(
    'filevault_auth_events_total',
    'Authentication events by outcome',
    ['event', 'outcome']
)

# Error tracking
errors_total = Counter(
    'filevault_errors_total',
    'Total number of error responses',
    ['code', 'service']
)

service_info = Info('filevault_service', 'Service information')


class MetricsCollector:
    def __init__(self, service: str):
        self.service = service
        self.instrumentator = Instrumentator(
            should_group_status_codes=False,
            should_ignore_untemplated=True,
            excluded_handlers=["/metrics", "/health", "/ready"],
        )

    def instrument_app(self, app, version: str):
        """Add automatic instrumentation to FastAPI app and expose /metrics"""
        self.instrumentator.instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)
        service_info.info({
            'service': self.service,
            'version': version,
            'python_version': platform.python_version(),
            'started_at': datetime.utcnow().isoformat(),
        })
