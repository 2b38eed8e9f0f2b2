from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query, status

from .deps import AccountStoreDep, InstagramDep, StatesDep, UserIdDep
from .models import SocialAccount, SocialPlatform
from .schemas import AccountUpdateRequest, InitiateAuthRequest, SocialAccountRead

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/social-accounts", tags=["social-accounts"])

INITIATE_AUTH = "initiate_auth"


async def _owned_account(store: AccountStoreDep, account_id: int, user_id: str) -> SocialAccount:
    account = await store.get_account(account_id)
    if not account or account.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found")
    return account


@router.get("")
async def list_social_accounts(user_id: UserIdDep, store: AccountStoreDep):
    accounts = await store.list_accounts(user_id)
    return {"data": [SocialAccountRead.model_validate(account).model_dump(mode="json") for account in accounts]}


@router.post("")
async def initiate_auth(
    payload: InitiateAuthRequest,
    user_id: UserIdDep,
    client: InstagramDep,
    states: StatesDep,
):
    if payload.platform != SocialPlatform.instagram.value:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Platform not supported yet")
    if payload.action != INITIATE_AUTH:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid action")
    state = states.issue(user_id, payload.platform)
    logger.info(f"[oauth] Issued Instagram auth URL for user {user_id}")
    return {"auth_url": client.get_authorization_url(state), "platform": payload.platform}


@router.patch("")
async def update_social_account(payload: AccountUpdateRequest, user_id: UserIdDep, store: AccountStoreDep):
    await _owned_account(store, payload.account_id, user_id)
    account = await store.update_account(payload.account_id, payload.updates)
    if account is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found")
    return {"data": SocialAccountRead.model_validate(account).model_dump(mode="json")}


@router.delete("")
async def delete_social_account(
    user_id: UserIdDep,
    store: AccountStoreDep,
    account_id: int = Query(...),
):
    await _owned_account(store, account_id, user_id)
    await store.delete_account(account_id)
    return {"success": True}
