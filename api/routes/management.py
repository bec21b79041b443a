"""
User Management API Routes

This module provides REST endpoints for managing enrolled owners:
- GET /users: List all enrolled owners
- GET /users/{owner_id}: Get an owner's gallery summary
- DELETE /users/{owner_id}: Delete an owner's gallery
- GET /stats: Gallery and authentication statistics
"""

from fastapi import APIRouter, HTTPException

from api.schemas import (
    OwnerInfo,
    OwnerListResponse,
    GalleryDetailResponse,
    GalleryRecordInfo,
    DeleteResponse,
)
from faceauth.gallery_store import get_gallery_store

# Create router
router = APIRouter(tags=["users"])


@router.get("/users", response_model=OwnerListResponse)
async def list_users():
    """
    List all enrolled owners.

    Returns summary information for each owner including the enrollment
    time, number of stored embeddings and their mean quality.
    """
    store = get_gallery_store()
    owners = store.list_owners()

    return OwnerListResponse(
        users=[
            OwnerInfo(
                owner_id=o["owner_id"],
                enrolled_at=o["enrolled_at"],
                n_records=o["n_records"],
                avg_quality=o["avg_quality"],
            )
            for o in owners
        ],
        total=len(owners),
    )


@router.get("/users/{owner_id}", response_model=GalleryDetailResponse)
async def get_user(owner_id: str):
    """
    Get the gallery summary of a specific owner.

    Args:
        owner_id: The owner's identifier.

    Returns:
        One entry per stored embedding (capture type, quality, time).

    Raises:
        404: If the owner is not enrolled.
    """
    store = get_gallery_store()
    summary = store.get_gallery_summary(owner_id)

    if summary is None:
        raise HTTPException(status_code=404, detail=f"User {owner_id} not found")

    return GalleryDetailResponse(
        owner_id=summary["owner_id"],
        enrolled_at=summary["enrolled_at"],
        avg_quality=summary["avg_quality"],
        records=[GalleryRecordInfo(**r) for r in summary["records"]],
    )


@router.delete("/users/{owner_id}", response_model=DeleteResponse)
async def delete_user(owner_id: str):
    """
    Delete an enrolled owner's gallery.

    This permanently removes the owner's embeddings. Authentication logs
    are kept.

    Raises:
        404: If the owner is not enrolled.
    """
    store = get_gallery_store()

    if not store.owner_exists(owner_id):
        raise HTTPException(status_code=404, detail=f"User {owner_id} not found")

    deleted = store.delete_gallery(owner_id)

    return DeleteResponse(
        success=deleted > 0,
        owner_id=owner_id,
        deleted_records=deleted,
        message=f"User {owner_id} deleted successfully" if deleted else "Deletion failed",
    )


@router.get("/stats", tags=["system"])
async def get_stats():
    """Gallery size, quality and authentication counters."""
    return get_gallery_store().get_stats()
