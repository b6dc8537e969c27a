"""
Pydantic schemas for Show resources
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field


class ShowInput(BaseModel):
    """One day of the schedule with its time slots"""
    date: str = Field(..., description="Show date, YYYY-MM-DD")
    time: List[str] = Field(..., min_length=1, description="Start times, HH:MM")


class ShowCreate(BaseModel):
    """Operator request to schedule shows of a catalog movie"""
    movie_id: str = Field(..., min_length=1, alias="movieId")
    shows_input: List[ShowInput] = Field(..., min_length=1, alias="showsInput")
    show_price: Decimal = Field(..., gt=0, alias="showPrice")

    model_config = ConfigDict(populate_by_name=True)


class ShowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    movie_id: str
    show_datetime: datetime
    show_price: Decimal


class ShowCreateResponse(BaseModel):
    success: bool = True
    message: str = "Show added successfully"
    shows: List[ShowResponse]


class SeatMapResponse(BaseModel):
    show_id: int
    occupied_seats: Dict[str, str] = Field(
        default_factory=dict,
        description="Seat label -> HOLD | SOLD; free seats are absent",
    )
    total_seats: int
    available_seats: int
