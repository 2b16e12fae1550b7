"""User registration endpoints."""

from fastapi import APIRouter

from agor_orchestrator.api.deps import OrchestratorDep, RecordId
from agor_orchestrator.models.user import User, UserConfig, UserInfo

router = APIRouter(prefix="/users", tags=["Users"])


@router.put("/{user_id}", response_model=UserInfo)
async def register_user(
    user_id: RecordId,
    config: UserConfig,
    orchestrator: OrchestratorDep,
) -> UserInfo:
    """Create or replace a user and the environment its executors get."""
    user = await orchestrator.register_user(
        User(
            user_id=user_id,
            name=config.name,
            env=config.env,
            unix_username=config.unix_username,
        )
    )
    return UserInfo(
        user_id=user.user_id,
        name=user.name,
        env_keys=sorted(user.env),
        unix_username=user.unix_username,
    )
