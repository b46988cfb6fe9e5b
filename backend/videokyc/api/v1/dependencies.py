"""
API Dependencies
Shared dependencies for authentication, Supabase access and call services
"""
import os
from typing import Optional
from fastapi import Depends, HTTPException, status, Header
from supabase import AsyncClient, acreate_client
from pydantic import BaseModel
from dotenv import load_dotenv

from videokyc.core.config import ConfigManager
from videokyc.domain.interfaces.call_record_store import CallRecordStore
from videokyc.infrastructure.factory import CallRecordStoreFactory
from videokyc.infrastructure.signaling.memory_relay import InMemorySignalingHub
from videokyc.services.call_service import CallService
from videokyc.services.kyc_service import KycService
from videokyc.services.notification_service import NotificationService

load_dotenv()


class CurrentUser(BaseModel):
    """Current authenticated user model"""
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


# Process-wide singletons, created on first use
_supabase: Optional[AsyncClient] = None
_config: Optional[ConfigManager] = None
_call_store: Optional[CallRecordStore] = None
_signaling_hub: Optional[InMemorySignalingHub] = None


def get_config() -> ConfigManager:
    global _config
    if _config is None:
        _config = ConfigManager()
    return _config


async def get_supabase() -> AsyncClient:
    """
    Get the async Supabase client with validation.

    Raises:
        RuntimeError: If Supabase URL or SERVICE_KEY is not configured
    """
    global _supabase
    if _supabase is not None:
        return _supabase

    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_SERVICE_KEY")

    if not url:
        raise RuntimeError(
            "SUPABASE_URL is not configured. "
            "Set SUPABASE_URL environment variable."
        )
    if not key:
        raise RuntimeError(
            "SUPABASE_SERVICE_KEY is not configured. "
            "Set SUPABASE_SERVICE_KEY environment variable."
        )

    _supabase = await acreate_client(url, key)
    return _supabase


async def get_call_store() -> CallRecordStore:
    global _call_store
    if _call_store is None:
        provider = get_config().video_kyc().store_provider
        supabase = await get_supabase() if provider == "supabase" else None
        _call_store = CallRecordStoreFactory.create(provider, supabase=supabase)
    return _call_store


def get_signaling_hub() -> InMemorySignalingHub:
    global _signaling_hub
    if _signaling_hub is None:
        _signaling_hub = InMemorySignalingHub()
    return _signaling_hub


async def get_kyc_service(supabase: AsyncClient = Depends(get_supabase)) -> KycService:
    video_kyc = get_config().video_kyc()
    return KycService(
        supabase,
        bucket=video_kyc.documents_bucket,
        url_ttl_seconds=video_kyc.document_url_ttl_seconds,
    )


async def get_call_service(store: CallRecordStore = Depends(get_call_store)) -> CallService:
    """
    Call service with the KYC and email decision listeners attached
    when Supabase is configured.
    """
    service = CallService(store)
    if os.getenv("SUPABASE_URL") and os.getenv("SUPABASE_SERVICE_KEY"):
        supabase = await get_supabase()
        video_kyc = get_config().video_kyc()
        kyc = KycService(supabase, video_kyc.documents_bucket, video_kyc.document_url_ttl_seconds)
        service.add_decision_listener(kyc.apply_call_decision)
        service.add_decision_listener(NotificationService(supabase).notify_call_outcome)
    return service


async def resolve_user(token: str, supabase: AsyncClient) -> CurrentUser:
    """
    Verify a JWT with Supabase Auth and load the user's role.

    Raises:
        HTTPException: If the token is invalid
    """
    try:
        user_response = await supabase.auth.get_user(token)

        if not user_response or not user_response.user:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or expired token",
                headers={"WWW-Authenticate": "Bearer"},
            )

        auth_user = user_response.user

        profile_response = await supabase.table("profiles").select(
            "full_name, role"
        ).eq("id", auth_user.id).limit(1).execute()

        profile = profile_response.data[0] if profile_response.data else {}
        return CurrentUser(
            id=str(auth_user.id),
            email=auth_user.email,
            name=profile.get("full_name"),
            role=profile.get("role") or "user",
        )

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Token validation failed: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
    supabase: AsyncClient = Depends(get_supabase)
) -> CurrentUser:
    """
    Dependency to get the current authenticated user from JWT token.

    Raises:
        HTTPException: If token is invalid or user not found
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header missing",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Extract token from "Bearer <token>"
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format. Use: Bearer <token>",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return await resolve_user(parts[1], supabase)


async def require_admin(
    current_user: CurrentUser = Depends(get_current_user)
) -> CurrentUser:
    """
    Dependency to require the verifier (admin) role.

    Raises:
        HTTPException: If user is not an admin
    """
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return current_user
