"""
Prometheus metrics for monitoring
"""
from prometheus_client import Counter, Histogram

# ==================== Booking Metrics ====================

bookings_created_total = Counter(
    'bookings_created_total',
    'Total bookings created'
)

bookings_transitions_total = Counter(
    'bookings_transitions_total',
    'Booking status transitions',
    ['status']  # AWAITING_PAYMENT, PAID, EXPIRED, CANCELLED
)

seat_conflicts_total = Counter(
    'seat_conflicts_total',
    'Reservations rejected because a seat was already taken'
)

ledger_retries_total = Counter(
    'ledger_retries_total',
    'Seat ledger writes retried after a version conflict'
)

booking_creation_duration_seconds = Histogram(
    'booking_creation_duration_seconds',
    'Time to create a booking',
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0]
)

# ==================== Webhook Metrics ====================

webhook_events_total = Counter(
    'webhook_events_total',
    'Payment webhook events by type and outcome',
    ['event_type', 'outcome']  # APPLIED, IGNORED, FAILED, DUPLICATE
)

webhook_signature_failures_total = Counter(
    'webhook_signature_failures_total',
    'Webhook deliveries rejected by signature verification'
)

# ==================== Show Metrics ====================

shows_created_total = Counter(
    'shows_created_total',
    'Total shows created'
)
