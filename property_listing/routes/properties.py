import logging
from fastapi import APIRouter, Request, Header
from typing import Optional

from property_listing.errors import PropertyNotFound
from property_listing.models import PropertyUpdateRequest, PropertyResponse

logger = logging.getLogger(__name__)
router = APIRouter()


# The {region} segment only routes through NGINX; writes are always authored by
# this instance's own region.
@router.put("/{region}/properties/{property_id}", response_model=PropertyResponse)
async def update_property(
    region: str,
    property_id: int,
    body: PropertyUpdateRequest,
    request: Request,
    x_request_id: Optional[str] = Header(default=None),
):
    coordinator = request.app.state.coordinator
    return await coordinator.submit_update(
        property_id,
        new_price=body.price,
        expected_version=body.version,
        request_id=x_request_id,
    )


@router.get("/{region}/properties/{property_id}", response_model=PropertyResponse)
async def get_property(region: str, property_id: int, request: Request):
    record = await request.app.state.store.get_record(property_id)
    if record is None:
        raise PropertyNotFound(property_id)
    return record
