from __future__ import annotations

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import OAuthStateStore, get_current_user_id, get_oauth_states
from .db import get_session
from .integrations.instagram_api import InstagramClient, get_instagram_client
from .services.account_store import AccountStore
from .services.analytics_store import AnalyticsStore
from .services.token_cipher import TokenCipher, get_token_cipher

SessionDep = Annotated[AsyncSession, Depends(get_session)]
UserIdDep = Annotated[str, Depends(get_current_user_id)]
CipherDep = Annotated[TokenCipher, Depends(get_token_cipher)]
InstagramDep = Annotated[InstagramClient, Depends(get_instagram_client)]
StatesDep = Annotated[OAuthStateStore, Depends(get_oauth_states)]


def get_account_store(session: SessionDep, cipher: CipherDep) -> AccountStore:
    return AccountStore(session, cipher)


def get_analytics_store(session: SessionDep) -> AnalyticsStore:
    return AnalyticsStore(session)


AccountStoreDep = Annotated[AccountStore, Depends(get_account_store)]
AnalyticsStoreDep = Annotated[AnalyticsStore, Depends(get_analytics_store)]
