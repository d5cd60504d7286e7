# Services package
from .brand_registry import BrandRegistry, BrandConfig, OperationMode, PricingBasis, WRITER_LOCK, LOCAL_WRITER
from .booking_writer import BookingWriter, BookingResult
from .idempotency_store import IdempotencyStore, hash_request
from .availability import AvailabilityChecker
from .webhook_processor import WebhookProcessor, WebhookProcessResult, compute_retry_delay
from .webhook_receiver import WebhookReceiver, WebhookReceiveResult
from .worker_pool import WebhookWorkerPool
from .retry_poller import RetryPoller
