from fastapi import APIRouter, Depends, HTTPException
import logging

from app.auth.dependencies import CurrentUser, get_current_user
from app.connections.ledger import ConnectionLedger
from app.connections.models import ConnectionStatusesRequest
from app.db.mongo import MongoDatabase, get_mongo
from app.utils.mongodb_utils import is_valid_object_id
from app.utils.pagination import PaginationParams, pagination_params

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/profile", tags=["connections"])


def get_ledger(mongo: MongoDatabase = Depends(get_mongo)) -> ConnectionLedger:
    return ConnectionLedger(mongo)


# ─────────────────────────────────────────────
# 1. Mes relations (paginées)
# ─────────────────────────────────────────────
@router.get("/me/connections")
async def list_my_connections(
    params: PaginationParams = Depends(pagination_params),
    current: CurrentUser = Depends(get_current_user),
    ledger: ConnectionLedger = Depends(get_ledger),
):
    items, pagination = await ledger.list_connections(current.id, params)
    return {"data": [item.model_dump() for item in items], "pagination": pagination.model_dump()}


# ─────────────────────────────────────────────
# 2. Statut de relation pour une liste d'utilisateurs
# ─────────────────────────────────────────────
@router.post("/me/connections/statuses")
async def get_connection_statuses(
    data: ConnectionStatusesRequest,
    current: CurrentUser = Depends(get_current_user),
    ledger: ConnectionLedger = Depends(get_ledger),
):
    invalid = [user_id for user_id in data.user_ids if not is_valid_object_id(user_id)]
    if invalid:
        raise HTTPException(status_code=400, detail=f"Identifiants invalides : {', '.join(invalid)}")
    statuses = await ledger.get_connection_statuses(current.id, data.user_ids)
    return {"statuses": statuses}


# ─────────────────────────────────────────────
# 3. Relation détaillée avec un utilisateur
# ─────────────────────────────────────────────
@router.get("/{user_id}/connection")
async def get_connection_with_user(
    user_id: str,
    current: CurrentUser = Depends(get_current_user),
    ledger: ConnectionLedger = Depends(get_ledger),
):
    if not is_valid_object_id(user_id):
        raise HTTPException(status_code=400, detail="Identifiant utilisateur invalide")
    connection = await ledger.get_detailed_connection(current.id, user_id)
    if connection is None:
        raise HTTPException(status_code=404, detail="Aucune relation avec cet utilisateur")
    return connection.model_dump()
