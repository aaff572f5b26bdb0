# =========================================================
# FILE: credit_engine/api/assignments.py
# =========================================================

import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import JSONResponse, Response

from credit_engine.api.deps import Services, get_current_user, get_services
from credit_engine.schemas.downloads import DownloadQuote, DownloadRequest
from credit_engine.services.errors import AssignmentNotFound, InsufficientCredits

router = APIRouter(prefix="/api/assignments", tags=["assignments"])
logger = logging.getLogger("credit-engine.assignments")

_EXT = {"docx": "docx", "pdf": "pdf", "txt": "txt"}


def _filename(title: str, download_type: str) -> str:
    stem = re.sub(r"[^A-Za-z0-9_-]+", "_", title or "assignment").strip("_") or "assignment"
    return f"{stem}.{_EXT.get(download_type, 'txt')}"


@router.get("/{assignment_id}/download-quote", response_model=DownloadQuote)
async def download_quote(
        assignment_id: str,
        user=Depends(get_current_user),
        services: Services = Depends(get_services),
):
    """Tell the UI up front whether the next download costs credits."""
    try:
        decision = await services.downloads.requires_charge(user["id"], assignment_id)
    except AssignmentNotFound:
        raise HTTPException(status_code=404, detail="Assignment not found")

    return DownloadQuote(
        assignment_id=assignment_id,
        requires_charge=decision.requires_charge,
        will_charge=decision.charge,
        credit_cost=services.downloads.cost,
        balance=await services.ledger.get_balance(user["id"]),
    )


@router.post("/{assignment_id}/download")
async def download_assignment(
        assignment_id: str,
        req: Optional[DownloadRequest] = None,
        idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
        user=Depends(get_current_user),
        services: Services = Depends(get_services),
):
    download_type = (req or DownloadRequest()).download_type
    cost = services.downloads.cost

    try:
        receipt = await services.downloads.charge_for_download(
            user["id"],
            assignment_id,
            cost=cost,
            download_type=download_type,
            idempotency_key=idempotency_key,
        )
    except AssignmentNotFound:
        raise HTTPException(status_code=404, detail="Assignment not found")
    except InsufficientCredits as exc:
        return JSONResponse(
            status_code=402,
            content={
                "message": f"Insufficient credits. You need {exc.shortfall} more credits to download this assignment.",
                "creditCost": cost,
                "remainingCredits": exc.remaining,
                "shortfall": exc.shortfall,
            },
        )

    assignment = await services.downloads.get_assignment(user["id"], assignment_id)
    renderer = services.renderer
    headers = {
        "Content-Disposition": f'attachment; filename="{_filename(assignment.title, download_type)}"',
        "X-Credits-Charged": str(receipt.credits_charged),
    }
    if receipt.remaining_credits is not None:
        headers["X-Remaining-Credits"] = str(receipt.remaining_credits)

    return Response(
        content=renderer.render(assignment, download_type),
        media_type=renderer.media_type(download_type),
        headers=headers,
    )
