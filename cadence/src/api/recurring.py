"""
Recurring schedule API endpoints.

Provides:
- Conflict preview for explicit ranges or a recurrence rule
- Series creation, expansion, split, template and schedule updates, deletion
- Group summaries, info updates, instance listings and deletion
- Per-occurrence cancel / reschedule / modify and membership lookup
- Human-readable rule descriptions

Design:
- Uses dependency injection for services
- Comprehensive error handling with meaningful HTTP status codes
- Groups and series are addressed by GUID (rsg_xxx / rsr_xxx)
- Occurrences are addressed by their record: /occurrences/{record_type}/{record_id}
- Permission checks are the caller's responsibility
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from cadence.src.api.dependencies import (
    get_conflict_service,
    get_instance_service,
    get_series_service,
    get_summary_service,
)
from cadence.src.schemas.conflict import (
    ConflictPreviewRequest,
    ConflictPreviewResponse,
    SeriesConflictPreviewRequest,
)
from cadence.src.schemas.recurring import (
    CancelOccurrenceRequest,
    DeleteResponse,
    ExpandRequest,
    ExpandResponse,
    GroupInfoResponse,
    GroupInfoUpdate,
    GroupSummaryResponse,
    InstanceFilter,
    InstanceResponse,
    MembershipResponse,
    ModifyOccurrenceRequest,
    OccurrenceResponse,
    RescheduleOccurrenceRequest,
    RescheduleResponse,
    RuleDescriptionResponse,
    ScheduleUpdate,
    ScheduleUpdateResponse,
    SeriesCreate,
    SeriesCreateResponse,
    SplitRequest,
    SplitResponse,
    TemplateUpdate,
    TemplateUpdateResponse,
)
from cadence.src.services.conflict_service import ConflictService
from cadence.src.services.exceptions import ConflictError, NotFoundError, ValidationError
from cadence.src.services.instance_service import InstanceService
from cadence.src.services.rule_validation import describe_rule, strip_rule_prefix, validate_rrule
from cadence.src.services.series_service import SeriesService
from cadence.src.services.summary_service import SummaryService
from cadence.src.utils.logging_config import get_logger


logger = get_logger("api")

router = APIRouter(
    prefix="/recurring",
    tags=["Recurring Schedules"],
)


def _internal_error(action: str, e: Exception) -> HTTPException:
    logger.error(f"Error {action}: {str(e)}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="An internal error occurred",
    )


# ============================================================================
# Rules & Conflict Preview
# ============================================================================


@router.get(
    "/rules/describe",
    response_model=RuleDescriptionResponse,
    summary="Describe recurrence rule",
    description="Validate a recurrence rule and render it in plain language",
)
async def describe_recurrence_rule(
    rrule: str = Query(..., min_length=1, description="Recurrence rule (RRULE body)"),
) -> RuleDescriptionResponse:
    """
    Validate and describe a recurrence rule.

    Raises:
        400 Bad Request: If the rule is malformed or its frequency unsupported

    Example:
        GET /api/recurring/rules/describe?rrule=FREQ=WEEKLY;BYDAY=MO,WE,FR;COUNT=12

        Response:
        {
          "rrule": "FREQ=WEEKLY;BYDAY=MO,WE,FR;COUNT=12",
          "frequency": "WEEKLY",
          "description": "Weekly on Monday, Wednesday, Friday, 12 times"
        }
    """
    try:
        frequency = validate_rrule(rrule)
        rule = strip_rule_prefix(rrule)
        return RuleDescriptionResponse(
            rrule=rule,
            frequency=frequency,
            description=describe_rule(rule),
        )

    except ValidationError as e:
        logger.warning(f"Rule rejected: {e.message}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.message,
        )


@router.post(
    "/conflicts/preview",
    response_model=ConflictPreviewResponse,
    summary="Preview conflicts",
    description="Check candidate time ranges against existing records in a scope",
)
async def preview_conflicts(
    request: ConflictPreviewRequest,
    conflict_service: ConflictService = Depends(get_conflict_service),
) -> ConflictPreviewResponse:
    """
    Preview conflicts for explicit candidate ranges.

    Ranges are half-open, so back-to-back candidates do not conflict.

    Example:
        POST /api/recurring/conflicts/preview
        {
          "record_type": "reservations",
          "scope_field": "resource_id",
          "scope_value": 5,
          "ranges": [{"start": "2026-03-02T09:00:00Z", "end": "2026-03-02T10:00:00Z"}]
        }
    """
    try:
        items = conflict_service.preview_conflicts(
            request.record_type,
            request.scope_field,
            request.scope_value,
            request.time_field,
            [r.to_time_range() for r in request.ranges],
        )
        return ConflictPreviewResponse(
            items=items,
            conflict_count=sum(1 for item in items if item.conflict),
        )

    except Exception as e:
        raise _internal_error("previewing conflicts", e)


@router.post(
    "/conflicts/preview-series",
    response_model=ConflictPreviewResponse,
    summary="Preview series conflicts",
    description="Expand a recurrence rule and check every occurrence for conflicts",
)
async def preview_series_conflicts(
    request: SeriesConflictPreviewRequest,
    conflict_service: ConflictService = Depends(get_conflict_service),
) -> ConflictPreviewResponse:
    """
    Preview conflicts for every occurrence a rule would produce.

    Raises:
        400 Bad Request: If the rule, duration or timezone is invalid
    """
    try:
        items = conflict_service.preview_series_conflicts(
            request.record_type,
            request.scope_field,
            request.scope_value,
            request.time_field,
            request.rrule,
            request.anchor_start,
            request.duration,
            tz_name=request.timezone,
            window_end=request.window_end,
        )
        return ConflictPreviewResponse(
            items=items,
            conflict_count=sum(1 for item in items if item.conflict),
        )

    except ValidationError as e:
        logger.warning(f"Series conflict preview rejected: {e.message}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.message,
        )

    except Exception as e:
        raise _internal_error("previewing series conflicts", e)


# ============================================================================
# Series
# ============================================================================


@router.post(
    "/series",
    response_model=SeriesCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create series",
    description="Create a series group with its first version and queue expansion",
)
async def create_series(
    request: SeriesCreate,
    series_service: SeriesService = Depends(get_series_service),
) -> SeriesCreateResponse:
    """
    Create a recurring series.

    Raises:
        400 Bad Request: Missing field, invalid rule, disallowed template field
        404 Not Found: If the record type does not exist

    Example:
        POST /api/recurring/series
        {
          "group_name": "Tuesday Yoga",
          "record_type": "reservations",
          "template": {"resource_id": 5},
          "rrule": "FREQ=WEEKLY;BYDAY=TU;COUNT=12",
          "anchor_start": "2026-03-03T17:00:00Z",
          "duration": "PT1H"
        }
    """
    try:
        result = series_service.create_series(
            group_name=request.group_name,
            record_type=request.record_type,
            template=request.template,
            rrule=request.rrule,
            anchor_start=request.anchor_start,
            duration=request.duration,
            description=request.description,
            color=request.color,
            timezone=request.timezone,
            time_field=request.time_field,
            expand_now=request.expand_now,
        )

        logger.info(
            f"Created series: {request.group_name}",
            extra={"guid": result.series_guid},
        )
        return result

    except NotFoundError as e:
        logger.warning(f"Series creation failed: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        )

    except ValidationError as e:
        logger.warning(f"Series validation failed: {e.message}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.message,
        )

    except Exception as e:
        raise _internal_error("creating series", e)


@router.post(
    "/series/{guid}/expand",
    response_model=ExpandResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Expand series",
    description="Queue materialization of a series through a date",
)
async def expand_series(
    guid: str,
    request: ExpandRequest,
    series_service: SeriesService = Depends(get_series_service),
) -> ExpandResponse:
    """
    Queue expansion of a series.

    Raises:
        404 Not Found: If series doesn't exist
    """
    try:
        series = series_service.get_series_by_guid(guid)
        return series_service.expand_series_instances(series.id, request.until)

    except NotFoundError:
        logger.warning(f"Series not found: {guid}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Series not found: {guid}",
        )

    except Exception as e:
        raise _internal_error("expanding series", e)


@router.post(
    "/series/{guid}/split",
    response_model=SplitResponse,
    summary="Split series",
    description="Edit this and future occurrences: close the series and open a new version",
)
async def split_series(
    guid: str,
    request: SplitRequest,
    series_service: SeriesService = Depends(get_series_service),
) -> SplitResponse:
    """
    Split a series from a date.

    Raises:
        400 Bad Request: If the series is closed, the date is not after its
            start, or the template delta is rejected
        404 Not Found: If series doesn't exist
    """
    try:
        series = series_service.get_series_by_guid(guid)
        result = series_service.split_series(
            series.id,
            split_date=request.split_date,
            new_anchor_start=request.new_anchor_start,
            new_duration=request.new_duration,
            template_delta=request.template_delta,
        )

        logger.info(
            f"Split series {guid} at {request.split_date}",
            extra={"new_guid": result.new_series_guid},
        )
        return result

    except NotFoundError:
        logger.warning(f"Series not found for split: {guid}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Series not found: {guid}",
        )

    except ValidationError as e:
        logger.warning(f"Series split rejected: {e.message}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.message,
        )

    except Exception as e:
        raise _internal_error("splitting series", e)


@router.patch(
    "/series/{guid}/template",
    response_model=TemplateUpdateResponse,
    summary="Update series template",
    description="Edit all occurrences: merge a template delta and push it to records",
)
async def update_series_template(
    guid: str,
    request: TemplateUpdate,
    series_service: SeriesService = Depends(get_series_service),
) -> TemplateUpdateResponse:
    """
    Update the template of a series.

    Raises:
        400 Bad Request: If the merged template is rejected
        404 Not Found: If series doesn't exist
        409 Conflict: If a pushed value collides in an exclusive scope
    """
    try:
        series = series_service.get_series_by_guid(guid)
        return series_service.update_series_template(
            series.id,
            request.template_delta,
            skip_exceptions=request.skip_exceptions,
        )

    except NotFoundError:
        logger.warning(f"Series not found for template update: {guid}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Series not found: {guid}",
        )

    except ConflictError as e:
        logger.warning(f"Template update conflict: {e.message}")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=e.message,
        )

    except ValidationError as e:
        logger.warning(f"Template update rejected: {e.message}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.message,
        )

    except Exception as e:
        raise _internal_error("updating series template", e)


@router.put(
    "/series/{guid}/schedule",
    response_model=ScheduleUpdateResponse,
    summary="Replace series schedule",
    description="Replace rule, anchor and duration; regenerates non-exception occurrences",
)
async def update_series_schedule(
    guid: str,
    request: ScheduleUpdate,
    series_service: SeriesService = Depends(get_series_service),
) -> ScheduleUpdateResponse:
    """
    Replace the schedule of a series.

    Raises:
        400 Bad Request: If the rule or duration is invalid
        404 Not Found: If series doesn't exist
    """
    try:
        series = series_service.get_series_by_guid(guid)
        return series_service.update_series_schedule(
            series.id,
            anchor_start=request.anchor_start,
            duration=request.duration,
            rrule=request.rrule,
        )

    except NotFoundError:
        logger.warning(f"Series not found for schedule update: {guid}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Series not found: {guid}",
        )

    except ValidationError as e:
        logger.warning(f"Schedule update rejected: {e.message}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.message,
        )

    except Exception as e:
        raise _internal_error("updating series schedule", e)


@router.get(
    "/series/{guid}/instances",
    response_model=List[InstanceResponse],
    summary="List series instances",
    description="List the occurrences tracked for one series version",
)
async def list_series_instances(
    guid: str,
    series_service: SeriesService = Depends(get_series_service),
    instance_service: InstanceService = Depends(get_instance_service),
) -> List[InstanceResponse]:
    """
    List instances of a series.

    Raises:
        404 Not Found: If series doesn't exist
    """
    try:
        series = series_service.get_series_by_guid(guid)
        instances = instance_service.list_series_instances(series.id)
        return [InstanceResponse.model_validate(i) for i in instances]

    except NotFoundError:
        logger.warning(f"Series not found: {guid}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Series not found: {guid}",
        )


@router.delete(
    "/series/{guid}",
    response_model=DeleteResponse,
    summary="Delete series",
    description="Delete a series with its occurrences and their records",
)
async def delete_series(
    guid: str,
    series_service: SeriesService = Depends(get_series_service),
) -> DeleteResponse:
    """
    Delete a series.

    The owning group is removed too when this was its last series.

    Raises:
        404 Not Found: If series doesn't exist
    """
    try:
        series = series_service.get_series_by_guid(guid)
        result = series_service.delete_series(series.id)
        logger.info(f"Deleted series: {guid}", extra={"records": result.entities_deleted})
        return result

    except NotFoundError:
        logger.warning(f"Series not found for deletion: {guid}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Series not found: {guid}",
        )

    except Exception as e:
        raise _internal_error("deleting series", e)


# ============================================================================
# Groups
# ============================================================================


@router.get(
    "/groups",
    response_model=List[GroupSummaryResponse],
    summary="List groups",
    description="Summaries of every series group, newest first",
)
async def list_groups(
    summary_service: SummaryService = Depends(get_summary_service),
) -> List[GroupSummaryResponse]:
    """List group summaries."""
    try:
        return summary_service.list_group_summaries()

    except Exception as e:
        raise _internal_error("listing groups", e)


@router.get(
    "/groups/{guid}",
    response_model=GroupSummaryResponse,
    summary="Get group summary",
    description="Versions, current schedule, counts and first occurrences of a group",
)
async def get_group(
    guid: str,
    series_service: SeriesService = Depends(get_series_service),
    summary_service: SummaryService = Depends(get_summary_service),
) -> GroupSummaryResponse:
    """
    Get a group summary by GUID.

    Raises:
        404 Not Found: If group doesn't exist
    """
    try:
        group = series_service.get_group_by_guid(guid)
        return summary_service.get_group_summary(group.id)

    except NotFoundError:
        logger.warning(f"Group not found: {guid}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Group not found: {guid}",
        )


@router.patch(
    "/groups/{guid}",
    response_model=GroupInfoResponse,
    summary="Update group info",
    description="Update display name, description and color of a group",
)
async def update_group(
    guid: str,
    request: GroupInfoUpdate,
    series_service: SeriesService = Depends(get_series_service),
) -> GroupInfoResponse:
    """
    Update group display properties.

    Raises:
        400 Bad Request: If color is invalid
        404 Not Found: If group doesn't exist
    """
    try:
        group = series_service.get_group_by_guid(guid)
        return series_service.update_series_group_info(
            group.id,
            display_name=request.display_name,
            description=request.description,
            color=request.color,
        )

    except NotFoundError:
        logger.warning(f"Group not found for update: {guid}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Group not found: {guid}",
        )

    except ValidationError as e:
        logger.warning(f"Group update rejected: {e.message}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.message,
        )

    except Exception as e:
        raise _internal_error("updating group", e)


@router.get(
    "/groups/{guid}/instances",
    response_model=List[InstanceResponse],
    summary="List group instances",
    description="Occurrences of every version in a group, by date",
)
async def list_group_instances(
    guid: str,
    instance_filter: InstanceFilter = Query(
        InstanceFilter.ALL, alias="filter", description="all, upcoming, past or exceptions"
    ),
    series_service: SeriesService = Depends(get_series_service),
    instance_service: InstanceService = Depends(get_instance_service),
) -> List[InstanceResponse]:
    """
    List the instances of a group.

    Raises:
        404 Not Found: If group doesn't exist
    """
    try:
        group = series_service.get_group_by_guid(guid)
        instances = instance_service.list_instances(group.id, instance_filter)
        return [InstanceResponse.model_validate(i) for i in instances]

    except NotFoundError:
        logger.warning(f"Group not found: {guid}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Group not found: {guid}",
        )


@router.delete(
    "/groups/{guid}",
    response_model=DeleteResponse,
    summary="Delete group",
    description="Delete a group, every version in it, and all their records",
)
async def delete_group(
    guid: str,
    series_service: SeriesService = Depends(get_series_service),
) -> DeleteResponse:
    """
    Delete a group.

    Raises:
        404 Not Found: If group doesn't exist
    """
    try:
        group = series_service.get_group_by_guid(guid)
        result = series_service.delete_group(group.id)
        logger.info(f"Deleted group: {guid}", extra={"records": result.entities_deleted})
        return result

    except NotFoundError:
        logger.warning(f"Group not found for deletion: {guid}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Group not found: {guid}",
        )

    except Exception as e:
        raise _internal_error("deleting group", e)


# ============================================================================
# Occurrences
# ============================================================================


@router.post(
    "/occurrences/{record_type}/{record_id}/cancel",
    response_model=OccurrenceResponse,
    summary="Cancel occurrence",
    description="Cancel one occurrence; records outside a series are deleted",
)
async def cancel_occurrence(
    record_type: str,
    record_id: int,
    request: Optional[CancelOccurrenceRequest] = None,
    instance_service: InstanceService = Depends(get_instance_service),
) -> OccurrenceResponse:
    """
    Cancel an occurrence. Safe to repeat.
    """
    try:
        return instance_service.cancel_occurrence(
            record_type, record_id, reason=request.reason if request else None
        )

    except Exception as e:
        raise _internal_error("cancelling occurrence", e)


@router.post(
    "/occurrences/{record_type}/{record_id}/reschedule",
    response_model=RescheduleResponse,
    summary="Reschedule occurrence",
    description="Move one occurrence to a new time range",
)
async def reschedule_occurrence(
    record_type: str,
    record_id: int,
    request: RescheduleOccurrenceRequest,
    instance_service: InstanceService = Depends(get_instance_service),
) -> RescheduleResponse:
    """
    Reschedule an occurrence.

    Raises:
        404 Not Found: If the record doesn't exist
        409 Conflict: If the new range collides in an exclusive scope
    """
    try:
        return instance_service.reschedule_occurrence(
            record_type, record_id, request.new_range.to_time_range()
        )

    except NotFoundError as e:
        logger.warning(f"Reschedule target not found: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        )

    except ConflictError as e:
        logger.warning(f"Reschedule conflict: {e.message}")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=e.message,
        )

    except Exception as e:
        raise _internal_error("rescheduling occurrence", e)


@router.patch(
    "/occurrences/{record_type}/{record_id}",
    response_model=OccurrenceResponse,
    summary="Modify occurrence",
    description="Edit the fields of this occurrence only",
)
async def modify_occurrence(
    record_type: str,
    record_id: int,
    request: ModifyOccurrenceRequest,
    instance_service: InstanceService = Depends(get_instance_service),
) -> OccurrenceResponse:
    """
    Modify an occurrence.

    Raises:
        400 Bad Request: If a value targets a non-editable field
        404 Not Found: If the record doesn't exist
        409 Conflict: If the change collides in an exclusive scope
    """
    try:
        return instance_service.modify_occurrence(
            record_type, record_id, request.values, reason=request.reason
        )

    except NotFoundError as e:
        logger.warning(f"Modify target not found: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        )

    except ConflictError as e:
        logger.warning(f"Modify conflict: {e.message}")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=e.message,
        )

    except ValidationError as e:
        logger.warning(f"Modify rejected: {e.message}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.message,
        )

    except Exception as e:
        raise _internal_error("modifying occurrence", e)


@router.get(
    "/occurrences/{record_type}/{record_id}/membership",
    response_model=MembershipResponse,
    summary="Get series membership",
    description="Whether a record belongs to a series, and which occurrence it is",
)
async def get_membership(
    record_type: str,
    record_id: int,
    instance_service: InstanceService = Depends(get_instance_service),
) -> MembershipResponse:
    """Look up the series membership of a record."""
    return instance_service.get_membership(record_type, record_id)
