"""
KYC Endpoints
Pending verifications and identity-document links for verifiers
"""
from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel
from typing import List, Optional

from videokyc.api.v1.dependencies import get_kyc_service, require_admin, CurrentUser
from videokyc.services.kyc_service import (
    KycService,
    KycProfileNotFoundError,
    KycDocumentNotFoundError,
)

router = APIRouter(prefix="/kyc", tags=["kyc"])


class PendingProfile(BaseModel):
    id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    kyc_status: Optional[str] = None
    has_document: bool = False


class DocumentUrlResponse(BaseModel):
    user_id: str
    url: str
    expires_in: int


@router.get("/pending", response_model=List[PendingProfile])
async def list_pending(
    admin: CurrentUser = Depends(require_admin),
    kyc: KycService = Depends(get_kyc_service),
):
    try:
        profiles = await kyc.list_pending_profiles()
    except Exception as e:
        raise HTTPException(status_code=502, detail=f"Failed to load pending profiles: {str(e)}")

    return [
        PendingProfile(
            id=p["id"],
            email=p.get("email"),
            full_name=p.get("full_name"),
            kyc_status=p.get("kyc_status"),
            has_document=bool(p.get("kyc_document_url")),
        )
        for p in profiles
    ]


@router.get("/{user_id}/document-url", response_model=DocumentUrlResponse)
async def get_document_url(
    user_id: str,
    admin: CurrentUser = Depends(require_admin),
    kyc: KycService = Depends(get_kyc_service),
):
    """Short-lived signed link to the user's uploaded ID"""
    try:
        url = await kyc.get_document_url(user_id)
    except (KycProfileNotFoundError, KycDocumentNotFoundError) as e:
        raise HTTPException(status_code=404, detail=e.message)
    except Exception as e:
        raise HTTPException(status_code=502, detail=f"Failed to create document link: {str(e)}")

    return DocumentUrlResponse(user_id=user_id, url=url, expires_in=kyc.url_ttl_seconds)
