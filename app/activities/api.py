from fastapi import APIRouter, Depends, HTTPException, status
import logging

from app.activities.models import ActivityCreate
from app.activities.services import (
    ActivityFullError,
    ActivityNotFoundError,
    ActivityPermissionError,
    ActivityService,
    HostCannotLeaveError,
    NotParticipantError,
)
from app.auth.dependencies import CurrentUser, get_current_user
from app.connections.models import ActivityKind
from app.db.mongo import MongoDatabase, get_mongo
from app.utils.pagination import PaginationParams, pagination_params

logger = logging.getLogger(__name__)

LABELS = {
    ActivityKind.DINNER: "Dîner",
    ActivityKind.EVENT: "Événement",
}


def build_router(kind: ActivityKind) -> APIRouter:
    """Routes communes aux dîners (/api/dinners) et aux événements (/api/events)."""
    kind = ActivityKind(kind)
    label = LABELS[kind]
    router = APIRouter(prefix=f"/api/{kind.value}s", tags=[f"{kind.value}s"])

    def get_service(mongo: MongoDatabase = Depends(get_mongo)) -> ActivityService:
        return ActivityService(mongo, kind)

    async def load(service: ActivityService, activity_id: str):
        try:
            return await service.get(activity_id)
        except ActivityNotFoundError:
            raise HTTPException(status_code=404, detail=f"{label} introuvable")

    @router.post("", status_code=status.HTTP_201_CREATED)
    async def create_activity(
        data: ActivityCreate,
        current: CurrentUser = Depends(get_current_user),
        service: ActivityService = Depends(get_service),
    ):
        activity = await service.create(data, current.id)
        return activity.model_dump()

    @router.get("")
    async def list_activities(
        params: PaginationParams = Depends(pagination_params),
        current: CurrentUser = Depends(get_current_user),
        service: ActivityService = Depends(get_service),
    ):
        activities, pagination = await service.list(params)
        return {"data": [a.model_dump() for a in activities], "pagination": pagination.model_dump()}

    @router.get("/{activity_id}")
    async def get_activity(
        activity_id: str,
        current: CurrentUser = Depends(get_current_user),
        service: ActivityService = Depends(get_service),
    ):
        activity = await load(service, activity_id)
        return activity.model_dump()

    @router.post("/{activity_id}/join")
    async def join_activity(
        activity_id: str,
        current: CurrentUser = Depends(get_current_user),
        service: ActivityService = Depends(get_service),
    ):
        try:
            activity = await service.join(activity_id, current.id)
        except ActivityNotFoundError:
            raise HTTPException(status_code=404, detail=f"{label} introuvable")
        except ActivityFullError:
            raise HTTPException(status_code=409, detail=f"{label} complet")
        return {"msg": "Participation enregistrée", kind.value: activity.model_dump()}

    @router.post("/{activity_id}/leave")
    async def leave_activity(
        activity_id: str,
        current: CurrentUser = Depends(get_current_user),
        service: ActivityService = Depends(get_service),
    ):
        try:
            activity = await service.leave(activity_id, current.id)
        except ActivityNotFoundError:
            raise HTTPException(status_code=404, detail=f"{label} introuvable")
        except HostCannotLeaveError:
            raise HTTPException(status_code=400, detail="L'hôte ne peut pas quitter son activité")
        except NotParticipantError:
            raise HTTPException(status_code=400, detail="Vous ne participez pas à cette activité")
        return {"msg": "Participation annulée", kind.value: activity.model_dump()}

    @router.delete("/{activity_id}")
    async def delete_activity(
        activity_id: str,
        current: CurrentUser = Depends(get_current_user),
        service: ActivityService = Depends(get_service),
    ):
        try:
            await service.delete(activity_id, current.id)
        except ActivityNotFoundError:
            raise HTTPException(status_code=404, detail=f"{label} introuvable")
        except ActivityPermissionError:
            raise HTTPException(status_code=403, detail="Seul l'hôte peut supprimer cette activité")
        return {"msg": f"{label} supprimé"}

    return router


events_router = build_router(ActivityKind.EVENT)
dinners_router = build_router(ActivityKind.DINNER)
