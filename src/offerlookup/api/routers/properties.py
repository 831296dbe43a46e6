"""
Properties Router

Endpoints for property search, lookup and manual edits.
Edits go through the same normalization and validation as imported rows.
"""
import asyncio
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.offerlookup.api.auth import User, get_current_active_user, require_admin, require_upload_role
from src.offerlookup.api.cache import (
    PROPERTY_DETAIL_PREFIX,
    PROPERTY_LIST_PREFIX,
    cache_result,
    invalidate_property_cache,
)
from src.offerlookup.api.dependencies import get_db
from src.offerlookup.api.schemas import (
    PropertyBase,
    PropertyCreate,
    PropertyDetail,
    PropertyList,
    PropertyUpdate,
)
from src.offerlookup.db.models import Property
from src.offerlookup.db.repository import ActivityLogRepository, PropertyRepository
from src.offerlookup.transformers.record_mapper import PropertyRecord, map_row
from src.offerlookup.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1/properties", tags=["properties"])

repository = PropertyRepository()
audit_repository = ActivityLogRepository()

AUDIT_ENTITY_TYPE = "property"


def _to_record(values: Dict[str, Any]) -> PropertyRecord:
    """
    Normalize and validate property fields.

    Raises:
        HTTPException: 422 when the address or offer is not usable
    """
    try:
        return map_row(values)
    except ValidationError as e:
        raise HTTPException(
            status_code=422,
            detail=[{"field": error["loc"][0], "message": error["msg"]} for error in e.errors()],
        )


async def _ensure_unique_address(db: AsyncSession, record: PropertyRecord, property_id: Optional[int] = None):
    existing = await repository.find_by_address_tuple(db, *record.address_tuple)
    if existing is not None and existing.id != property_id:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Property with this address already exists",
        )


async def _commit_change(
    db: AsyncSession,
    action: str,
    property_id: int,
    user: User,
    details: Dict[str, Any],
    request: Request,
) -> None:
    """Record the audit entry, commit, then drop cached listings."""
    await audit_repository.log(
        db,
        action=action,
        entity_type=AUDIT_ENTITY_TYPE,
        user_id=user.id,
        entity_id=str(property_id),
        details=details,
        ip_address=request.client.host if request.client else None,
    )
    await db.commit()

    await asyncio.to_thread(invalidate_property_cache)
    logger.info("property_changed", action=action, property_id=property_id, user=user.username)


def _address_details(property_obj: Property) -> Dict[str, Any]:
    return {
        'property_address': property_obj.property_address,
        'property_city': property_obj.property_city,
        'property_state': property_obj.property_state,
        'property_zip': property_obj.property_zip,
    }


@router.get("", response_model=PropertyList)
@cache_result(PROPERTY_LIST_PREFIX, ttl=settings.cache_ttl_seconds)
async def search_properties(
    q: Optional[str] = Query(None, description="Matches address, city, zip or owner name"),
    city: Optional[str] = Query(None),
    state: Optional[str] = Query(None, min_length=2, max_length=2),
    zip_code: Optional[str] = Query(None, alias="zip"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """
    Search properties with optional filters, ordered by city, zip and address.
    """
    result = await repository.search(
        db,
        query=q,
        city=city,
        state=state,
        zip_code=zip_code,
        page=page,
        page_size=page_size,
    )
    return PropertyList(
        items=[PropertyBase.model_validate(row) for row in result['rows']],
        total=result['count'],
        page=result['current_page'],
        page_size=page_size,
        total_pages=result['total_pages'],
    ).model_dump(mode="json")


@router.post("", response_model=PropertyDetail, status_code=status.HTTP_201_CREATED)
async def create_property(
    payload: PropertyCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_upload_role),
):
    """
    Create a property.

    Raises:
        HTTPException: 409 if the normalized address already exists,
            422 if the address is not usable
    """
    record = _to_record(payload.model_dump())
    await _ensure_unique_address(db, record)

    property_obj = await repository.create(db, **record.to_model_kwargs())
    await _commit_change(db, "create", property_obj.id, current_user, _address_details(property_obj), request)

    return PropertyDetail.model_validate(property_obj)


@router.get("/{property_id}", response_model=PropertyDetail)
@cache_result(PROPERTY_DETAIL_PREFIX, ttl=settings.cache_detail_ttl_seconds)
async def get_property_detail(
    property_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """
    Get a single property with its current offer.

    Raises:
        HTTPException: 404 if property not found
    """
    property_obj = await repository.get_by_id(db, property_id)
    if not property_obj:
        raise HTTPException(status_code=404, detail=f"Property not found: {property_id}")

    return PropertyDetail.model_validate(property_obj).model_dump(mode="json")


@router.put("/{property_id}", response_model=PropertyDetail)
async def update_property(
    property_id: int,
    payload: PropertyUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_upload_role),
):
    """
    Update a property. Fields left out of the body keep their stored values.

    Raises:
        HTTPException: 404 unknown property, 409 address taken by another
            property, 422 unusable address
    """
    property_obj = await repository.get_by_id(db, property_id)
    if not property_obj:
        raise HTTPException(status_code=404, detail=f"Property not found: {property_id}")

    changes = payload.model_dump(exclude_unset=True)
    merged = {
        'first_name': property_obj.first_name,
        'last_name': property_obj.last_name,
        'offer': property_obj.offer,
        **_address_details(property_obj),
        **changes,
    }
    record = _to_record(merged)
    await _ensure_unique_address(db, record, property_id=property_id)

    values = record.to_model_kwargs()
    values.pop('created_at')
    await repository.update(db, property_id, **values)
    await _commit_change(db, "update", property_id, current_user, {'changes': sorted(changes)}, request)

    return PropertyDetail.model_validate(property_obj)


@router.delete("/{property_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_property(
    property_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    """
    Delete a property (admin only).

    Raises:
        HTTPException: 404 if property not found
    """
    property_obj = await repository.get_by_id(db, property_id)
    if not property_obj:
        raise HTTPException(status_code=404, detail=f"Property not found: {property_id}")

    details = _address_details(property_obj)
    await repository.delete(db, property_id)
    await _commit_change(db, "delete", property_id, current_user, details, request)

    return Response(status_code=status.HTTP_204_NO_CONTENT)
