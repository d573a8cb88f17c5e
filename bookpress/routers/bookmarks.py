from fastapi import APIRouter, Depends, HTTPException

from bookpress.dependencies import get_registrar
from bookpress.models.bookmark import BookmarkResponse
from bookpress.services.bookmarks import BookmarkRegistrar

router = APIRouter()


@router.get("/bookmarks/{token}", response_model=BookmarkResponse, summary="Resolve a bookmark token")
async def resolve_bookmark(token: str, registrar: BookmarkRegistrar = Depends(get_registrar)) -> BookmarkResponse:
    info = registrar.resolve(token)
    if info is None:
        raise HTTPException(status_code=404, detail="Unknown bookmark token.")
    return BookmarkResponse(token=token, **info.model_dump())
