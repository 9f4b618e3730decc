"""
Record API endpoints.

Provides direct access to the generic record store:
- Create a record (one-off bookings outside any series)
- Get a record
- Delete a record directly

Design:
- Deleting a record that belongs to a series leaves its occurrence behind
  as a cancelled exception
- Exclusive-scope collisions surface as 409 Conflict
"""

from fastapi import APIRouter, Depends, HTTPException, status

from cadence.src.api.dependencies import get_record_service
from cadence.src.schemas.conflict import TimeRangeSchema
from cadence.src.schemas.record import RecordCreate, RecordResponse
from cadence.src.services.entity_store import StoredRecord
from cadence.src.services.exceptions import ConflictError, NotFoundError
from cadence.src.services.record_service import RecordService
from cadence.src.utils.logging_config import get_logger


logger = get_logger("api")

router = APIRouter(
    prefix="/records",
    tags=["Records"],
)


def _to_response(record: StoredRecord) -> RecordResponse:
    return RecordResponse(
        record_type=record.record_type,
        record_id=record.record_id,
        fields=record.fields,
        time_field=record.time_field,
        time_range=TimeRangeSchema.from_time_range(record.time_range),
        label=record.label,
    )


@router.post(
    "",
    response_model=RecordResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create record",
    description="Create a record of any registered record type",
)
async def create_record(
    request: RecordCreate,
    record_service: RecordService = Depends(get_record_service),
) -> RecordResponse:
    """
    Create a record.

    Raises:
        404 Not Found: If the record type does not exist
        409 Conflict: If the range collides in an exclusive scope

    Example:
        POST /api/records
        {
          "record_type": "reservations",
          "fields": {"resource_id": 5, "display_name": "Team sync"},
          "time_range": {"start": "2026-03-02T09:00:00Z", "end": "2026-03-02T10:00:00Z"}
        }
    """
    try:
        record = record_service.create_record(
            request.record_type,
            request.fields,
            time_field=request.time_field,
            time_range=request.time_range.to_time_range() if request.time_range else None,
        )
        return _to_response(record)

    except NotFoundError as e:
        logger.warning(f"Record creation failed: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        )

    except ConflictError as e:
        logger.warning(f"Record conflict: {e.message}")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=e.message,
        )

    except Exception as e:
        logger.error(f"Error creating record: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An internal error occurred",
        )


@router.get(
    "/{record_type}/{record_id}",
    response_model=RecordResponse,
    summary="Get record",
)
async def get_record(
    record_type: str,
    record_id: int,
    record_service: RecordService = Depends(get_record_service),
) -> RecordResponse:
    """
    Get a record.

    Raises:
        404 Not Found: If the record doesn't exist
    """
    try:
        return _to_response(record_service.get_record(record_type, record_id))

    except NotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        )


@router.delete(
    "/{record_type}/{record_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete record",
    description="Delete a record directly (its occurrence, if any, becomes cancelled)",
)
async def delete_record(
    record_type: str,
    record_id: int,
    record_service: RecordService = Depends(get_record_service),
) -> None:
    """
    Delete a record.

    Raises:
        404 Not Found: If the record doesn't exist
    """
    try:
        record_service.delete_record(record_type, record_id)

    except NotFoundError as e:
        logger.warning(f"Record not found for deletion: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        )

    except Exception as e:
        logger.error(f"Error deleting record: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An internal error occurred",
        )
