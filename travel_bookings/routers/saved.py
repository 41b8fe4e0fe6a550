from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status

from travel_bookings.crud import listing_crud, saved_item_crud
from travel_bookings.deps import CurrentUser, can_read_booking, can_write_booking
from travel_bookings.schemas import SavedItemCreate, SavedItemResponse

router = APIRouter(prefix="/saved", tags=["saved"])


@router.get("/", response_model=list[SavedItemResponse])
async def list_saved(
    page: int = 1,
    page_size: int = 20,
    current_user: CurrentUser = Depends(can_read_booking),
) -> list[SavedItemResponse]:
    return await saved_item_crud.list_saved(
        current_user.id, page=max(page, 1), page_size=min(max(page_size, 1), 100)
    )


@router.post("/", response_model=SavedItemResponse, status_code=status.HTTP_201_CREATED)
async def save_item(
    payload: SavedItemCreate,
    response: Response,
    current_user: CurrentUser = Depends(can_write_booking),
) -> SavedItemResponse:
    if not await listing_crud.get_listing(payload.item_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Listing not found"
        )
    saved, created = await saved_item_crud.save_item(
        current_user.id, payload.item_id, payload.item_type
    )
    if not created:
        response.status_code = status.HTTP_200_OK
    return saved


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_item(
    item_id: UUID,
    current_user: CurrentUser = Depends(can_write_booking),
) -> None:
    if not await saved_item_crud.remove_item(current_user.id, item_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Saved item not found"
        )
