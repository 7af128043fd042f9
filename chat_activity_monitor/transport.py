"""
Transport Module

This module talks to the upstream chat API. The bulk ingestor and the
moderator lookup only depend on the ``ChannelSource`` protocol, so tests and
other transports can stand in for the REST client below.
"""
import logging
from typing import Any, Dict, List, Optional, Protocol

import requests

from chat_activity_monitor import config
from chat_activity_monitor.errors import AccessDeniedError, TransientFetchError
from chat_activity_monitor.models import Channel

logger = logging.getLogger(__name__)

# Upstream JSON error code for "Missing Access"
MISSING_ACCESS_CODE = 50001
MEMBERS_PAGE_SIZE = 1000


class ChannelSource(Protocol):
    def list_channels(self, guild_id: str) -> List[Channel]:
        ...

    def fetch_page(
        self, channel_id: str, before: Optional[str] = None, limit: int = 100
    ) -> List[Dict[str, Any]]:
        """Messages of a channel, newest first, older than ``before``."""
        ...

    def list_roles(self, guild_id: str) -> List[Dict[str, Any]]:
        ...

    def list_role_members(self, guild_id: str, role_id: str) -> List[str]:
        ...


class DiscordRestSource:
    """
    Fetches guild channels, message history and role membership over HTTP.
    """

    def __init__(
        self,
        token: str = config.DISCORD_TOKEN,
        api_url: str = config.DISCORD_API_URL,
        timeout: float = config.REQUEST_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.headers = {
            "Accept": "application/json",
            "User-Agent": "Chat-Activity-Monitor",
        }
        if token:
            self.headers["Authorization"] = token
            logger.info("Using token for upstream authentication")
        else:
            logger.warning(
                "No upstream token provided. Set the DISCORD_TOKEN environment variable."
            )

    def list_channels(self, guild_id: str) -> List[Channel]:
        data = self._get(f"/guilds/{guild_id}/channels")
        return [
            Channel(
                id=str(item["id"]),
                name=item.get("name") or str(item["id"]),
                type=int(item.get("type", 0)),
            )
            for item in data
        ]

    def fetch_page(
        self, channel_id: str, before: Optional[str] = None, limit: int = 100
    ) -> List[Dict[str, Any]]:
        params = {"limit": limit}
        if before:
            params["before"] = before
        return self._get(f"/channels/{channel_id}/messages", params=params)

    def list_roles(self, guild_id: str) -> List[Dict[str, Any]]:
        return self._get(f"/guilds/{guild_id}/roles")

    def list_role_members(self, guild_id: str, role_id: str) -> List[str]:
        member_ids = []
        after = "0"
        while True:
            members = self._get(
                f"/guilds/{guild_id}/members",
                params={"limit": MEMBERS_PAGE_SIZE, "after": after},
            )
            if not members:
                break
            for member in members:
                if role_id in member.get("roles", []):
                    member_ids.append(str(member["user"]["id"]))
            if len(members) < MEMBERS_PAGE_SIZE:
                break
            after = str(members[-1]["user"]["id"])
        return member_ids

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.api_url}{path}"
        try:
            response = self.session.get(
                url, headers=self.headers, params=params, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise TransientFetchError(f"Request to {path} failed: {e}") from e

        if response.status_code == 200:
            return response.json()

        error_code = None
        try:
            body = response.json()
            if isinstance(body, dict):
                error_code = body.get("code")
        except ValueError:
            body = None

        if response.status_code == 403 or error_code == MISSING_ACCESS_CODE:
            raise AccessDeniedError(f"Missing access to {path}")
        if response.status_code == 429:
            retry_after = body.get("retry_after") if isinstance(body, dict) else None
            logger.error(f"Rate limited on {path}, retry after {retry_after}s")
            raise TransientFetchError(
                f"Rate limited on {path}", status_code=429, retry_after=retry_after
            )
        logger.error(f"Failed to fetch {path}: {response.status_code}")
        raise TransientFetchError(
            f"Failed to fetch {path}: HTTP {response.status_code}",
            status_code=response.status_code,
        )
