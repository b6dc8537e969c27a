"""
Shows API endpoints
"""
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from showtime.api.errors import to_http
from showtime.core.database import get_db
from showtime.core.dependencies import get_importer, require_operator
from showtime.middleware.rate_limiter import limiter
from showtime.schemas import SeatMapResponse, ShowCreate, ShowCreateResponse, ShowResponse
from showtime.services.cache_service import CacheService
from showtime.services.show_importer import ShowCatalogImporter
from showtime.services.stores import ShowStore

router = APIRouter()


@router.post(
    "/shows",
    response_model=ShowCreateResponse,
    status_code=201,
    dependencies=[Depends(require_operator)],
)
async def add_shows(
    show_data: ShowCreate,
    db: AsyncSession = Depends(get_db),
    importer: ShowCatalogImporter = Depends(get_importer),
):
    """
    Schedule shows for a catalog movie (operator only)

    The movie is imported from TMDB on first use. Either every show of the
    schedule is created or none is.
    """
    try:
        shows = await importer.add_shows(
            db,
            movie_id=show_data.movie_id,
            schedule=[entry.model_dump() for entry in show_data.shows_input],
            price=show_data.show_price,
        )
    except Exception as e:
        raise to_http(e)

    return ShowCreateResponse(shows=[ShowResponse.model_validate(show) for show in shows])


@router.get("/shows/{show_id}/seats", response_model=SeatMapResponse)
@limiter.limit("60/minute")
async def get_occupied_seats(
    request: Request,
    show_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Occupied seats of a show (HOLD or SOLD); absent seats are free"""
    cached = await CacheService.get_show_seats(show_id)
    if cached:
        return SeatMapResponse(**cached)

    show = await ShowStore.get(db, show_id)
    if show is None:
        raise HTTPException(status_code=404, detail=f"Show {show_id} not found")

    occupied = show.occupancy
    response = SeatMapResponse(
        show_id=show.id,
        occupied_seats=occupied,
        total_seats=len(show.seat_labels),
        available_seats=len(show.seat_labels) - len(occupied),
    )
    await CacheService.set_show_seats(show_id, response.model_dump(mode="json"))
    return response
