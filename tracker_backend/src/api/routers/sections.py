from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from ..auth import get_owner_id
from ..dependencies import get_section_service
from ..schemas import SectionArchive, SectionCreate, SectionDetailOut, SectionList, SectionOut, SectionUpdate
from ..services import SectionService

router = APIRouter(
    prefix="/api/v1/sections",
    tags=["sections"],
)


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=SectionList,
    summary="List Sections",
    description="List the caller's active sections, or archived ones with archived=true. Newest first.",
)
def list_sections(
    archived: bool = Query(False, description="Return archived sections instead of active ones"),
    owner_id: str = Depends(get_owner_id),
    service: SectionService = Depends(get_section_service),
) -> SectionList:
    sections = service.list(owner_id, archived=archived)
    return SectionList(sections=[SectionOut(**s) for s in sections], count=len(sections))


# PUBLIC_INTERFACE
@router.get(
    "/{section_id}",
    response_model=SectionDetailOut,
    summary="Get Section",
    description="Get a single section with the number of tasks filed under it.",
    responses={404: {"description": "Section not found"}},
)
def get_section(
    section_id: str,
    owner_id: str = Depends(get_owner_id),
    service: SectionService = Depends(get_section_service),
) -> SectionDetailOut:
    return SectionDetailOut(**service.get(owner_id, section_id))


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=SectionOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Section",
    responses={409: {"description": "An active section with this name already exists"}},
)
def create_section(
    payload: SectionCreate,
    owner_id: str = Depends(get_owner_id),
    service: SectionService = Depends(get_section_service),
) -> SectionOut:
    return SectionOut(**service.create(owner_id, payload))


# PUBLIC_INTERFACE
@router.patch(
    "/{section_id}",
    response_model=SectionOut,
    summary="Update Section",
    description="Partially update a section.",
    responses={404: {"description": "Section not found"}, 409: {"description": "Name already in use"}},
)
def update_section(
    section_id: str,
    payload: SectionUpdate,
    owner_id: str = Depends(get_owner_id),
    service: SectionService = Depends(get_section_service),
) -> SectionOut:
    return SectionOut(**service.update(owner_id, section_id, payload))


# PUBLIC_INTERFACE
@router.patch(
    "/{section_id}/archive",
    response_model=SectionOut,
    summary="Archive Section",
    description="Archive (archive=true) or unarchive (archive=false) a section.",
    responses={404: {"description": "Section not found"}, 409: {"description": "Name already in use"}},
)
def archive_section(
    section_id: str,
    payload: SectionArchive,
    owner_id: str = Depends(get_owner_id),
    service: SectionService = Depends(get_section_service),
) -> SectionOut:
    return SectionOut(**service.archive(owner_id, section_id, payload.archive))


# PUBLIC_INTERFACE
@router.delete(
    "/{section_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Section",
    description="Delete a section. Refused with 409 and the blocking tasks_count while tasks reference it.",
    responses={
        204: {"description": "Section deleted"},
        404: {"description": "Section not found"},
        409: {"description": "Section still has tasks"},
    },
)
def delete_section(
    section_id: str,
    owner_id: str = Depends(get_owner_id),
    service: SectionService = Depends(get_section_service),
) -> None:
    service.delete(owner_id, section_id)
    return None
