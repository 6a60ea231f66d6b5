from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from starlette.status import HTTP_404_NOT_FOUND

from tracegate.api.deps import settings_dep
from tracegate.auth.jwt import JwtConfig, issue_token
from tracegate.auth.models import MAX_SUBJECT_LENGTH, Role
from tracegate.settings import Settings

router = APIRouter(prefix="/api/auth", tags=["dev"])


class DevTokenRequest(BaseModel):
    subject: str = Field(min_length=1, max_length=MAX_SUBJECT_LENGTH)
    roles: list[Role] = Field(default_factory=list)
    ttl_minutes: int | None = Field(default=None, ge=1, le=24 * 60)
    mfa_verified: bool = False


class DevTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


@router.post("/token", response_model=DevTokenResponse)
async def mint_dev_token(
    body: DevTokenRequest,
    settings: Settings = Depends(settings_dep),
) -> DevTokenResponse:
    if settings.env == "prod":
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Not found")

    ttl = timedelta(minutes=body.ttl_minutes or settings.token_ttl_minutes)
    token = issue_token(
        cfg=JwtConfig.from_settings(settings),
        subject=body.subject,
        roles=[r.value for r in body.roles],
        ttl=ttl,
        mfa_verified=body.mfa_verified,
    )
    return DevTokenResponse(access_token=token, expires_in=int(ttl.total_seconds()))
