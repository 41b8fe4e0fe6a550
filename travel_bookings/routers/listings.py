from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from travel_bookings.cache import get_availability_cache, set_availability_cache
from travel_bookings.crud import booking_crud, listing_crud
from travel_bookings.deps import CurrentUser, can_approve_listing, can_write_listing
from travel_bookings.rules import is_bookable
from travel_bookings.schemas import (
    Availability,
    ListingApprovalUpdate,
    ListingCreate,
    ListingFilters,
    ListingResponse,
)

router = APIRouter(prefix="/listings", tags=["listings"])


async def _bookable_listing(listing_id: UUID) -> ListingResponse:
    listing = await listing_crud.get_listing(listing_id)
    if not listing or not is_bookable(listing):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Listing not found"
        )
    return listing


@router.get("/", response_model=list[ListingResponse])
async def list_listings(
    filters: ListingFilters = Depends(),
) -> list[ListingResponse]:
    return await listing_crud.list_listings(filters=filters)


@router.get("/{listing_id}", response_model=ListingResponse)
async def get_listing(listing_id: UUID) -> ListingResponse:
    return await _bookable_listing(listing_id)


@router.get("/{listing_id}/availability", response_model=Availability)
async def get_availability(listing_id: UUID) -> Availability:
    """Booked slots per date, counting active bookings only."""
    listing = await _bookable_listing(listing_id)

    booked = await get_availability_cache(listing_id)
    if booked is None:
        by_date = await booking_crud.booked_slots_by_date(listing_id)
        booked = {day.isoformat(): slots for day, slots in sorted(by_date.items())}
        await set_availability_cache(listing_id, booked)

    return Availability(
        listing_id=listing.id,
        capacity=listing.capacity,
        days_opened=listing.days_opened,
        booked_slots=booked,
    )


@router.post("/", response_model=ListingResponse, status_code=status.HTTP_201_CREATED)
async def create_listing(
    payload: ListingCreate,
    current_user: CurrentUser = Depends(can_write_listing),
) -> ListingResponse:
    return await listing_crud.create_listing(current_user.id, payload)


@router.patch("/{listing_id}/approval", response_model=ListingResponse)
async def set_listing_approval(
    listing_id: UUID,
    payload: ListingApprovalUpdate,
    _: CurrentUser = Depends(can_approve_listing),
) -> ListingResponse:
    listing = await listing_crud.set_approval(listing_id, payload.approval_status)
    if not listing:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Listing not found"
        )
    return listing
