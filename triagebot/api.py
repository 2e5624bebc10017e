"""FastAPI RPC server for the triage queue."""

import logging
from datetime import datetime
from typing import Optional

from fastapi import FastAPI
from pydantic import BaseModel, ConfigDict, Field

from .config import RepoListError
from .services.action_item_service import ActionItemService, ActionResult
from .services.sync_service import SyncService

logger = logging.getLogger(__name__)


class RPCRequest(BaseModel):
    """Request bodies use camelCase keys; snake_case is accepted too."""

    model_config = ConfigDict(populate_by_name=True)


class AssignRequest(RPCRequest):
    action_id: str = Field(alias="actionId")
    user_id: str = Field(alias="userId")


class CloseRequest(RPCRequest):
    action_id: str = Field(alias="actionId")
    reason: Optional[str] = None


class NotesRequest(RPCRequest):
    action_id: str = Field(alias="actionId")
    note: Optional[str] = None


class ScheduleRequest(RPCRequest):
    action_id: str = Field(alias="actionId")
    when: datetime = Field(alias="datetime")
    reason: Optional[str] = None
    user_id: str = Field(alias="userId")


class SlackLookupRequest(RPCRequest):
    slack_id: str = Field(alias="slackId")


def _response(result: ActionResult) -> dict[str, str]:
    return {"response": result.message}


def create_app(action_items: ActionItemService, sync: SyncService) -> FastAPI:
    """Create and configure the RPC application.

    Args:
        action_items: Triage operations service
        sync: Reconciliation pass service

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(
        title="Triage Bot",
        description="GitHub issue and pull request triage queue",
        version="1.0.0",
    )

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy", "service": "triagebot"}

    @app.post("/rpc/syncGithubItems")
    async def sync_github_items() -> dict:
        """Run one reconciliation pass over every configured repository."""
        try:
            report = await sync.sync_all()
        except (RepoListError, FileNotFoundError) as e:
            logger.error("Syncing failed: %s", e)
            return {"response": str(e), "repositories": []}
        except Exception as e:
            logger.exception("Syncing failed: %s", e)
            return {"response": str(e) or e.__class__.__name__, "repositories": []}

        return {
            "response": report.summary(),
            "repositories": [r.to_dict() for r in report.results],
        }

    @app.post("/rpc/assignActionItem")
    async def assign_action_item(req: AssignRequest) -> dict[str, str]:
        return _response(await action_items.assign(req.action_id, req.user_id))

    @app.post("/rpc/resolveActionItem")
    async def resolve_action_item(req: CloseRequest) -> dict[str, str]:
        return _response(await action_items.resolve(req.action_id, req.reason))

    @app.post("/rpc/irrelevantActionItem")
    async def irrelevant_action_item(req: CloseRequest) -> dict[str, str]:
        return _response(await action_items.mark_irrelevant(req.action_id, req.reason))

    @app.post("/rpc/updateNotes")
    async def update_notes(req: NotesRequest) -> dict[str, str]:
        return _response(await action_items.annotate(req.action_id, req.note))

    @app.post("/rpc/snoozeActionItem")
    async def snooze_action_item(req: ScheduleRequest) -> dict[str, str]:
        return _response(
            await action_items.snooze(req.action_id, req.when, req.reason, req.user_id)
        )

    @app.post("/rpc/followUpActionItem")
    async def follow_up_action_item(req: ScheduleRequest) -> dict[str, str]:
        return _response(
            await action_items.follow_up(req.action_id, req.when, req.reason, req.user_id)
        )

    @app.post("/rpc/getSlackActionItem")
    async def get_slack_action_item(req: SlackLookupRequest) -> dict[str, Optional[str]]:
        return {"actionId": await action_items.get_slack_action_item(req.slack_id)}

    return app
