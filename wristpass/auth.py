from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Dict, Optional

import httpx
from loguru import logger

from .helpers import ct_equal


class AuthProvider(ABC):
    # bearer token -> user id, or None if the token is not valid
    @abstractmethod
    async def resolve(self, token: str) -> Optional[str]: ...


class RemoteAuth(AuthProvider):
    """
    Asks the hosted auth service who owns the token:
      GET {base_url}/auth/v1/user   ->   {"id": "<uuid>", ...}
    """

    def __init__(self, http: httpx.AsyncClient, base_url: str,
                 anon_key: str = "") -> None:
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key

    async def resolve(self, token: str) -> Optional[str]:
        headers = {"Authorization": f"Bearer {token}"}
        if self.anon_key:
            headers["apikey"] = self.anon_key
        try:
            r = await self.http.get(f"{self.base_url}/auth/v1/user",
                                    headers=headers)
        except httpx.HTTPError as e:
            logger.warning("auth provider unreachable: {}", e)
            return None
        if r.status_code != 200:
            return None
        user_id = (r.json() or {}).get("id")
        return str(user_id) if user_id else None


class StaticTokenAuth(AuthProvider):
    """Fixed token table for demos and tests."""

    def __init__(self, tokens: Dict[str, str]) -> None:
        self.tokens = dict(tokens)

    @classmethod
    def from_env(cls, value: str) -> "StaticTokenAuth":
        # "tok1=user1,tok2=user2"
        tokens = {}
        for pair in value.split(","):
            tok, sep, user = pair.strip().partition("=")
            if sep and tok and user:
                tokens[tok.strip()] = user.strip()
        return cls(tokens)

    async def resolve(self, token: str) -> Optional[str]:
        for known, user_id in self.tokens.items():
            if ct_equal(token, known):
                return user_id
        return None
