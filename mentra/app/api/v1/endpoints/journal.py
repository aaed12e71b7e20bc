# mentra/app/api/v1/endpoints/journal.py
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from mentra.app.api import deps
from mentra.app.api.deps import CurrentUser
from mentra.app.schemas.journal import (
    AccessLogItem,
    BulkPrivacyResult,
    BulkPrivacyUpdate,
    JournalEntryIn,
    JournalEntryPage,
    JournalEntryUpdate,
    JournalEntryView,
    JournalStatistics,
    RequestInfo,
)
from mentra.app.services.journal_repository import JournalEntryRepository

router = APIRouter()

any_reader = deps.require_roles("student", "teacher", "parent")
student_only = deps.require_roles("student")


# 1. LIST ENTRIES (metadata only, never decrypted)
@router.get("/entries", response_model=JournalEntryPage)
async def list_entries(
        student_id: Optional[str] = Query(None, alias="studentId"),
        limit: int = 20,
        offset: int = 0,
        start_date: Optional[datetime] = Query(None, alias="startDate"),
        end_date: Optional[datetime] = Query(None, alias="endDate"),
        tags: Optional[str] = None,
        emotions: Optional[str] = None,
        search_query: Optional[str] = Query(None, alias="searchQuery"),
        include_private: bool = Query(True, alias="includePrivate"),
        sort_by: str = Query("created_at", alias="sortBy"),
        sort_order: str = Query("desc", alias="sortOrder"),
        current_user: CurrentUser = Depends(any_reader),
        repo: JournalEntryRepository = Depends(deps.get_repository),
):
    # Teachers and parents pass studentId; students default to themselves
    target = student_id or current_user.id
    return await repo.find_by_student_id(
        target,
        current_user.id,
        {
            "limit": limit,
            "offset": offset,
            "start_date": start_date,
            "end_date": end_date,
            "tags": tags,
            "emotions": emotions,
            "search_query": search_query,
            "include_private": include_private,
            "sort_by": sort_by,
            "sort_order": sort_order,
        },
    )


# 2. CREATE ENTRY (the author is always the caller)
@router.post("/entries", response_model=JournalEntryView, status_code=status.HTTP_201_CREATED)
async def create_entry(
        entry_in: JournalEntryIn,
        current_user: CurrentUser = Depends(student_only),
        request_info: RequestInfo = Depends(deps.get_request_info),
        repo: JournalEntryRepository = Depends(deps.get_repository),
):
    data = entry_in.model_dump()
    data["student_id"] = current_user.id
    return await repo.create(data, request_info)


# 3. BULK PRIVACY UPDATE
@router.put("/entries/privacy/bulk", response_model=BulkPrivacyResult)
async def bulk_update_privacy(
        payload: BulkPrivacyUpdate,
        current_user: CurrentUser = Depends(student_only),
        request_info: RequestInfo = Depends(deps.get_request_info),
        repo: JournalEntryRepository = Depends(deps.get_repository),
):
    return await repo.bulk_update_privacy(
        payload.entry_ids,
        current_user.id,
        payload,
        current_user.id,
        request_info,
    )


# 4. READ ONE ENTRY (decrypted)
@router.get("/entries/{entry_id}", response_model=JournalEntryView)
async def read_entry(
        entry_id: str,
        current_user: CurrentUser = Depends(any_reader),
        request_info: RequestInfo = Depends(deps.get_request_info),
        repo: JournalEntryRepository = Depends(deps.get_repository),
):
    entry = await repo.find_by_id(entry_id, current_user.id, request_info)
    if entry is None:
        raise HTTPException(status_code=404, detail="Journal entry not found")
    return entry


# 5. UPDATE ENTRY
@router.put("/entries/{entry_id}", response_model=JournalEntryView)
async def update_entry(
        entry_id: str,
        entry_in: JournalEntryUpdate,
        current_user: CurrentUser = Depends(student_only),
        request_info: RequestInfo = Depends(deps.get_request_info),
        repo: JournalEntryRepository = Depends(deps.get_repository),
):
    return await repo.update(entry_id, entry_in, current_user.id, request_info)


# 6. SOFT DELETE
@router.delete("/entries/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_entry(
        entry_id: str,
        current_user: CurrentUser = Depends(student_only),
        request_info: RequestInfo = Depends(deps.get_request_info),
        repo: JournalEntryRepository = Depends(deps.get_repository),
):
    await repo.delete(entry_id, current_user.id, request_info)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# 7. AUDIT TRAIL (owner only)
@router.get("/entries/{entry_id}/access-log", response_model=List[AccessLogItem])
async def read_access_log(
        entry_id: str,
        current_user: CurrentUser = Depends(student_only),
        repo: JournalEntryRepository = Depends(deps.get_repository),
):
    return await repo.get_access_log(entry_id, current_user.id)


# 8. STATISTICS
@router.get("/stats", response_model=JournalStatistics)
async def read_statistics(
        student_id: Optional[str] = Query(None, alias="studentId"),
        time_window_days: int = Query(30, alias="timeWindowDays", ge=1, le=3650),
        current_user: CurrentUser = Depends(any_reader),
        repo: JournalEntryRepository = Depends(deps.get_repository),
):
    return await repo.get_statistics(student_id or current_user.id, current_user.id, time_window_days)


# 9. STORAGE HEALTH
@router.get("/storage/health")
async def storage_health(
        response: Response,
        current_user: CurrentUser = Depends(deps.require_roles("teacher", "admin")),
        repo: JournalEntryRepository = Depends(deps.get_repository),
):
    health = await repo.health_check()
    if health["status"] != "healthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return health
