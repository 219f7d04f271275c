from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.core.dependencies import get_github_service
from app.core.errors import UpstreamError
from app.services.github_service import GitHubService

router = APIRouter()


def _not_configured() -> JSONResponse:
    return JSONResponse(status_code=503,
                        content={"success": False, "error": "GITHUB_ORG is not configured"})


def _upstream_failure(error: UpstreamError) -> JSONResponse:
    return JSONResponse(status_code=502, content={"success": False, "error": str(error)})


@router.get("/prs")
async def get_active_prs(github: Optional[GitHubService] = Depends(get_github_service)):
    """Open pull requests across the organization's repositories."""
    if github is None:
        return _not_configured()
    try:
        pull_requests = await github.list_open_pull_requests()
    except UpstreamError as e:
        return _upstream_failure(e)
    return {"success": True, "count": len(pull_requests), "data": pull_requests}


@router.get("/repos")
async def get_all_repos(github: Optional[GitHubService] = Depends(get_github_service)):
    if github is None:
        return _not_configured()
    try:
        repos = await github.list_repositories()
    except UpstreamError as e:
        return _upstream_failure(e)
    return {"success": True, "count": len(repos), "data": repos}


@router.get("/health")
async def check_github_health(github: Optional[GitHubService] = Depends(get_github_service)):
    if github is None:
        return _not_configured()
    try:
        status = await github.check_health()
    except UpstreamError as e:
        return _upstream_failure(e)
    return {"success": True, **status}
