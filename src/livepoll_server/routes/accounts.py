"""Account side-channel endpoints — verification codes and account deletion.

Verification codes are public (used during registration).  Requesting an
account deletion needs the owner identity injected by the auth gateway;
confirming it needs only the emailed token.
"""

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from livepoll_db.models.enums import VerificationPurpose
from livepoll_core.accounts import AccountService

from livepoll_server.dependencies import Owner, commit_or_fail, get_accounts, get_db, get_owner

router = APIRouter(prefix="/accounts", tags=["accounts"])


# ------------------------------------------------------------------
# Request / response models
# ------------------------------------------------------------------

class CodeRequest(BaseModel):
    email: str
    purpose: VerificationPurpose = VerificationPurpose.REGISTER


class VerifyRequest(BaseModel):
    email: str
    code: str
    purpose: VerificationPurpose = VerificationPurpose.REGISTER


class ConfirmDeletionRequest(BaseModel):
    token: str


class ExpiryResponse(BaseModel):
    sent: bool = True
    expires_at: datetime


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.post("/verification-codes", status_code=202)
async def request_code(
    body: CodeRequest,
    db: AsyncSession = Depends(get_db),
    accounts: AccountService = Depends(get_accounts),
) -> ExpiryResponse:
    """Email a 6-digit code valid for 10 minutes."""
    expires_at = await accounts.request_verification_code(
        db, email=body.email, purpose=body.purpose,
    )
    await commit_or_fail(db)
    return ExpiryResponse(expires_at=expires_at)


@router.post("/verification-codes/verify")
async def verify_code(
    body: VerifyRequest,
    db: AsyncSession = Depends(get_db),
    accounts: AccountService = Depends(get_accounts),
) -> dict:
    """Redeem a code.  400 for an unknown, expired or used code."""
    await accounts.verify_code(db, email=body.email, code=body.code, purpose=body.purpose)
    await commit_or_fail(db)
    return {"verified": True}


@router.post("/deletion-requests", status_code=202)
async def request_deletion(
    owner: Owner = Depends(get_owner),
    db: AsyncSession = Depends(get_db),
    accounts: AccountService = Depends(get_accounts),
) -> ExpiryResponse:
    """Email a single-use deletion link valid for 30 minutes."""
    expires_at = await accounts.request_account_deletion(
        db, owner_id=owner.id, email=owner.email,
    )
    await commit_or_fail(db)
    return ExpiryResponse(expires_at=expires_at)


@router.post("/deletion-requests/confirm")
async def confirm_deletion(
    body: ConfirmDeletionRequest,
    db: AsyncSession = Depends(get_db),
    accounts: AccountService = Depends(get_accounts),
) -> dict:
    """Redeem the emailed token and delete the owner's data."""
    await accounts.confirm_account_deletion(db, token=body.token)
    await commit_or_fail(db)
    return {"deleted": True}
