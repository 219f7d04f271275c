"""
Sources of grading instructions for runs that arrive without any,
such as webhook-triggered grading.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

import httpx

from app.core.errors import UpstreamError

logger = logging.getLogger(__name__)

NOTION_API_URL = "https://api.notion.com/v1"
NOTION_VERSION = "2022-06-28"

# Prefix added in front of each block type's text
_BLOCK_PREFIXES = {
    "paragraph": "",
    "heading_1": "# ",
    "heading_2": "## ",
    "heading_3": "### ",
    "bulleted_list_item": "• ",
    "numbered_list_item": "- ",
    "quote": "> ",
    "callout": "💡 ",
}


class InstructionsProvider(ABC):
    @abstractmethod
    async def get_instructions(self, repository: str, branch: str) -> Optional[str]:
        """Rubric text for a submission, or None when there is none."""

    async def check_health(self) -> bool:
        return False


class StaticInstructionsProvider(InstructionsProvider):
    def __init__(self, text: Optional[str]):
        self.text = text

    async def get_instructions(self, repository: str, branch: str) -> Optional[str]:
        return self.text


def extract_rich_text(rich_text: Any) -> str:
    if not isinstance(rich_text, list):
        return ""
    return "".join(item.get("plain_text", "") for item in rich_text if isinstance(item, dict))


def extract_block_text(block: Dict[str, Any]) -> Optional[str]:
    """Plain text of one Notion block, or None for unsupported/empty blocks."""
    block_type = block.get("type")
    body = block.get(block_type) if block_type else None
    if not isinstance(body, dict) or "rich_text" not in body:
        return None

    text = extract_rich_text(body["rich_text"])
    if block_type == "code":
        return f"```\n{text}\n```"
    if block_type in _BLOCK_PREFIXES:
        return _BLOCK_PREFIXES[block_type] + text
    return None


def blocks_to_text(blocks: Iterable[Dict[str, Any]]) -> str:
    parts: List[str] = []
    for block in blocks:
        text = extract_block_text(block)
        if text:
            parts.append(text)
    return "\n\n".join(parts)


class NotionInstructionsProvider(InstructionsProvider):
    """Reads the grading rubric from the blocks of a Notion page."""

    def __init__(self, api_key: str, page_id: str, timeout: float = 15.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key
        self.page_id = page_id
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Notion-Version": NOTION_VERSION,
        }

    async def fetch_page_content(self, page_id: str) -> str:
        logger.info("Fetching Notion page %s", page_id)
        headers = self._headers()
        blocks: List[Dict[str, Any]] = []
        params: Dict[str, Any] = {"page_size": 100}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                while True:
                    response = await client.get(
                        f"{NOTION_API_URL}/blocks/{page_id}/children",
                        headers=headers,
                        params=params,
                    )
                    response.raise_for_status()
                    payload = response.json()
                    if not isinstance(payload, dict):
                        raise ValueError("Notion returned a non-object body")
                    blocks.extend(payload.get("results", []))
                    if not payload.get("has_more") or not payload.get("next_cursor"):
                        break
                    params["start_cursor"] = payload["next_cursor"]
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamError(f"Failed to fetch Notion page: {e}") from e

        text = blocks_to_text(blocks)
        logger.info("Extracted %d characters from %d Notion blocks", len(text), len(blocks))
        return text

    async def get_instructions(self, repository: str, branch: str) -> Optional[str]:
        text = await self.fetch_page_content(self.page_id)
        return text or None

    async def check_health(self) -> bool:
        """True when the API key is accepted by Notion."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(f"{NOTION_API_URL}/users/me", headers=self._headers())
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Notion health check failed: %s", e)
            return False
        return True
