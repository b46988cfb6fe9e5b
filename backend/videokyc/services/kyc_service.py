"""
KYC Service
Profile KYC status and identity-document access for verifiers.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from supabase import AsyncClient

from videokyc.domain.models.call_record import CallRecord, CallStatus, VerificationResult

logger = logging.getLogger(__name__)

PROFILES_TABLE = "profiles"
PENDING_KYC_STATUSES = ["pending", "not_verified"]


class KycProfileNotFoundError(Exception):
    """Raised when a profile does not exist."""
    def __init__(self, message: str = "User profile not found."):
        self.message = message
        super().__init__(self.message)


class KycDocumentNotFoundError(Exception):
    """Raised when a user has not uploaded an identity document."""
    def __init__(self, message: str = "This user has not uploaded a KYC document yet."):
        self.message = message
        super().__init__(self.message)


class KycService:
    """
    Reads and updates KYC fields on `profiles`.

    Used as a decision listener: once a call is completed the requester's
    profile is marked verified or rejected.
    """

    def __init__(self, supabase: AsyncClient, bucket: str = "kyc-documents", url_ttl_seconds: int = 60):
        self.supabase = supabase
        self.bucket = bucket
        self.url_ttl_seconds = url_ttl_seconds

    async def list_pending_profiles(self) -> List[Dict[str, Any]]:
        """Profiles still waiting for identity verification"""
        response = await self.supabase.table(PROFILES_TABLE).select(
            "id, email, full_name, kyc_status, kyc_document_url, created_at"
        ).in_("kyc_status", PENDING_KYC_STATUSES).order("created_at").execute()
        return response.data or []

    async def get_profile(self, user_id: str) -> Dict[str, Any]:
        response = await self.supabase.table(PROFILES_TABLE).select("*").eq("id", user_id).limit(1).execute()
        if not response.data:
            raise KycProfileNotFoundError()
        return response.data[0]

    async def get_document_url(self, user_id: str) -> str:
        """
        Create a short-lived signed URL for the user's identity document.

        Raises:
            KycProfileNotFoundError: If the profile does not exist
            KycDocumentNotFoundError: If no document was uploaded
        """
        profile = await self.get_profile(user_id)
        path = profile.get("kyc_document_url")
        if not path:
            raise KycDocumentNotFoundError()

        signed = await self.supabase.storage.from_(self.bucket).create_signed_url(path, self.url_ttl_seconds)
        url = signed.get("signedURL") or signed.get("signedUrl")
        if not url:
            raise KycDocumentNotFoundError("Could not create a link for this document.")

        logger.info(f"Issued {self.url_ttl_seconds}s document link for user {user_id}")
        return url

    async def apply_call_decision(self, record: CallRecord) -> Optional[Dict[str, Any]]:
        """Decision listener: copy a completed call's outcome onto the profile"""
        if record.status != CallStatus.COMPLETED:
            return None

        if record.verification_result == VerificationResult.APPROVED:
            update = {
                "kyc_status": "verified",
                "kyc_verified_at": datetime.utcnow().isoformat(),
                "kyc_notes": record.notes,
            }
        else:
            update = {
                "kyc_status": "rejected",
                "kyc_notes": record.notes,
            }

        response = await self.supabase.table(PROFILES_TABLE).update(update).eq(
            "id", record.requester_id
        ).execute()

        logger.info(
            f"Profile {record.requester_id} KYC -> {update['kyc_status']}",
            extra={"call_id": record.id},
        )
        return response.data[0] if response.data else None
