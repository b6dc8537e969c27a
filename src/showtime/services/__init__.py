"""
Services package exports
"""
from showtime.services.booking_state_machine import BookingStateMachine
from showtime.services.errors import (
    AuthenticityError,
    BookingNotFoundError,
    ExternalLookupError,
    InternalFailure,
    InvalidTransitionError,
    SeatUnavailableError,
    ShowNotFoundError,
    ShowtimeError,
    ValidationError,
)
from showtime.services.expiry_worker import start_expiry_worker, stop_expiry_worker
from showtime.services.movie_catalog import TMDBCatalog
from showtime.services.payment_gateway import StripeGateway
from showtime.services.payment_reconciler import PaymentReconciler, ReconcileOutcome, ReconcileResult
from showtime.services.seat_ledger import LedgerOutcome, LedgerResult, SeatLedger
from showtime.services.show_importer import ShowCatalogImporter

__all__ = [
    "BookingStateMachine",
    "PaymentReconciler",
    "ReconcileOutcome",
    "ReconcileResult",
    "SeatLedger",
    "LedgerOutcome",
    "LedgerResult",
    "ShowCatalogImporter",
    "StripeGateway",
    "TMDBCatalog",
    "ShowtimeError",
    "ValidationError",
    "SeatUnavailableError",
    "AuthenticityError",
    "ExternalLookupError",
    "InvalidTransitionError",
    "BookingNotFoundError",
    "ShowNotFoundError",
    "InternalFailure",
    "start_expiry_worker",
    "stop_expiry_worker",
]
