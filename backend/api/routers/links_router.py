"""Short link redirector"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from api.core.dependencies import get_link_service
from shared.errors import LinkNotFoundError, RedirectTargetDeniedError
from shared.services.links import LinkService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["links"])


@router.get("/l/{short_code}", response_model=None)
async def follow_short_link(
    short_code: str,
    request: Request,
    links: LinkService = Depends(get_link_service),
) -> HTMLResponse | RedirectResponse:
    try:
        decision = await links.resolve(
            short_code,
            request.headers.get("user-agent"),
            request.headers.get("referer"),
        )
    except LinkNotFoundError:
        raise HTTPException(status_code=404, detail="Not Found") from None
    except RedirectTargetDeniedError as e:
        logger.warning(f"Refused redirect for {short_code}: {e.target_url}")
        raise HTTPException(status_code=403, detail="Redirect target not allowed") from None
    except Exception as e:
        logger.exception(f"Short link {short_code} failed: {e}")
        raise HTTPException(status_code=500, detail="Internal Server Error") from None

    if decision.is_preview:
        return HTMLResponse(decision.html or "", headers={"Cache-Control": "public, max-age=300"})
    return RedirectResponse(decision.location, status_code=302)
