"""
Animal router.

Provides REST API endpoints for:
- Looking an animal up by RFID tag (POST /api/animal)
- Listing animals with search, sorting and pagination (GET /hewan)
"""

import math
import structlog
from typing import Optional
from fastapi import APIRouter, BackgroundTasks, Body, Depends, status

from rfid_api.src.dependencies import (
    AnimalListParams,
    get_animal_list_params,
    get_animal_repository,
    get_scan_service,
)
from rfid_api.src.exceptions import NotFoundError, ValidationError, error_response
from rfid_api.src.models.animal import (
    AnimalListResponse,
    AnimalRecord,
    ErrorResponse,
    ScanRequest,
)
from rfid_api.src.repositories.animal_repo import AnimalRepository
from rfid_api.src.services.scan_service import ScanService

logger = structlog.get_logger(__name__)

router = APIRouter(
    tags=["Animals"],
    responses={
        400: {"model": ErrorResponse, "description": "Validation Error"},
        500: {"model": ErrorResponse, "description": "Internal Error"}
    }
)


@router.post(
    "/api/animal",
    response_model=AnimalRecord,
    status_code=status.HTTP_200_OK,
    summary="Look up an animal by RFID tag",
    description="""
    Look up the animal carrying the scanned tag.

    On a match the record is returned and, after the response, a summary is
    sent to every chat recipient and an `rfid-scanned` event is pushed to the
    live feed. On a miss a "not found" notification is sent instead.

    **Error Responses:**
    - 400: `uid` missing or empty
    - 404: No animal carries this tag
    - 500: Datastore failure
    """,
    responses={
        404: {"model": ErrorResponse, "description": "Tag not registered"}
    }
)
async def scan_animal(
    background_tasks: BackgroundTasks,
    payload: Optional[ScanRequest] = Body(None),
    scan_service: ScanService = Depends(get_scan_service)
):
    uid = (payload.uid or "").strip() if payload else ""
    if not uid:
        logger.warning("rfid_scan_rejected", reason="missing_uid")
        raise ValidationError("UID required")

    record = await scan_service.lookup(uid)

    if record is None:
        background_tasks.add_task(scan_service.announce_miss, uid)
        return error_response(NotFoundError(), background=background_tasks)

    background_tasks.add_task(scan_service.announce_found, record)
    return record


@router.get(
    "/hewan",
    response_model=AnimalListResponse,
    summary="List animals",
    description="""
    Paginated, sortable, searchable list of animals.

    **Query Parameters:**
    - page: 1-based page number (default 1)
    - limit: Page size (default 10)
    - search: Case-insensitive substring of nama or jenis
    - sortBy: id, rfid_code, nama, jenis, usia or status_kesehatan (default id)
    - order: ASC or DESC (default ASC; other values mean ASC)
    """
)
async def list_animals(
    params: AnimalListParams = Depends(get_animal_list_params),
    repository: AnimalRepository = Depends(get_animal_repository)
) -> AnimalListResponse:
    animals, total = await repository.list_animals(
        search=params.search,
        sort_by=params.sort_by,
        order=params.order,
        limit=params.limit,
        offset=params.offset
    )

    logger.debug(
        "animals_listed",
        total=total,
        page=params.page,
        limit=params.limit,
        search=params.search or None
    )

    return AnimalListResponse(
        total=total,
        page=params.page,
        limit=params.limit,
        total_pages=math.ceil(total / params.limit),
        data=animals
    )
