import logging

from fastapi import APIRouter, HTTPException, Request

from gist.services.errors import (
    ChallengeUnsolvableError,
    FetchError,
    InvalidInputError,
    NotFoundError,
)

router = APIRouter(prefix="/api/entries", tags=["entries"])
logger = logging.getLogger(__name__)


@router.get(
    "/{entry_id}/readable",
    summary="Readable content for an entry",
    description="Returns the sanitized full-text HTML of the entry's article, fetching and storing it on first request. Later requests are served from the stored copy.",
)
async def get_readable_content(entry_id: int, request: Request):
    service = request.app.state.readability
    try:
        content = await service.fetch_readable_content(entry_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Entry not found")
    except ChallengeUnsolvableError as e:
        logger.warning(f"Challenge not passed for entry {entry_id}: {e}")
        raise HTTPException(status_code=502, detail="Origin challenge could not be solved")
    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except FetchError as e:
        logger.warning(f"Fetch failed for entry {entry_id}: {e}")
        raise HTTPException(status_code=502, detail="Failed to fetch article")
    return {"id": entry_id, "readableContent": content}
