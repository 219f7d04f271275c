from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from app.core.dependencies import get_instructions_provider
from app.services.instructions_provider import InstructionsProvider, NotionInstructionsProvider

router = APIRouter()


@router.get("/health")
async def check_notion_health(instructions: InstructionsProvider = Depends(get_instructions_provider)):
    """Whether grading instructions can be read from Notion."""
    configured = isinstance(instructions, NotionInstructionsProvider)
    return {
        "success": True,
        "configured": configured,
        "connected": await instructions.check_health() if configured else False,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
