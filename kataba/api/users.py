from fastapi import APIRouter, Depends, Request

from kataba.core.principal import Authenticated
from kataba.dependencies import require_user
from kataba.schemas.users import UserResponse

router = APIRouter()


@router.get("/users/me")
async def get_current_user(
    request: Request,
    user: Authenticated = Depends(require_user),
) -> UserResponse:
    """Profile of the signed-in caller."""
    return await request.app.state.user_service.get_user(user.user_id)
