"""
FastAPI Dependencies
"""
import secrets
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, HTTPException, Query

from showtime.core.config import settings
from showtime.services.booking_state_machine import BookingStateMachine
from showtime.services.movie_catalog import TMDBCatalog
from showtime.services.payment_gateway import StripeGateway
from showtime.services.payment_reconciler import PaymentReconciler
from showtime.services.show_importer import ShowCatalogImporter


@lru_cache
def get_state_machine() -> BookingStateMachine:
    """Booking lifecycle service"""
    return BookingStateMachine()


@lru_cache
def get_gateway() -> StripeGateway:
    """Stripe gateway"""
    return StripeGateway()


@lru_cache
def get_catalog() -> TMDBCatalog:
    """TMDB catalog client"""
    return TMDBCatalog()


def get_reconciler(
    gateway: StripeGateway = Depends(get_gateway),
    state_machine: BookingStateMachine = Depends(get_state_machine),
) -> PaymentReconciler:
    """Webhook reconciler"""
    return PaymentReconciler(gateway, state_machine)


def get_importer(catalog: TMDBCatalog = Depends(get_catalog)) -> ShowCatalogImporter:
    """Show importer"""
    return ShowCatalogImporter(catalog)


def get_webhook_secret() -> str:
    """Stripe endpoint signing secret"""
    return settings.STRIPE_WEBHOOK_SECRET


async def get_current_user_id(
    user_id: str = Query(..., min_length=1, description="User ID issued by the identity provider")
) -> str:
    return user_id


async def require_operator(x_admin_key: Optional[str] = Header(None, alias="X-Admin-Key")) -> None:
    """Show creation is operator-only"""
    if not x_admin_key or not secrets.compare_digest(x_admin_key, settings.ADMIN_API_KEY):
        raise HTTPException(status_code=403, detail="Operator access required")
