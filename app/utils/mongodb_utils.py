# app/utils/mongodb_utils.py
from datetime import datetime, timezone
from bson import ObjectId
from bson.errors import InvalidId
from typing import Any, Dict, Optional, Union

IdLike = Union[ObjectId, str]


def is_valid_object_id(value: Any) -> bool:
    """
    Vérifie qu'une chaîne est un ObjectId canonique (24 caractères hexadécimaux).
    Le test de l'aller-retour écarte les chaînes de 12 octets acceptées par bson.
    """
    if isinstance(value, ObjectId):
        return True
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        return False
    return str(ObjectId(value)) == value


def to_object_id(value: IdLike) -> ObjectId:
    """Convertit un identifiant (ObjectId ou str) en ObjectId. Lève InvalidId sinon."""
    if isinstance(value, ObjectId):
        return value
    if not is_valid_object_id(value):
        raise InvalidId(f"Identifiant invalide : {value!r}")
    return ObjectId(value)


def convert_pydantic_for_mongodb(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Prépare un dictionnaire issu d'un modèle Pydantic pour MongoDB.
    Les chaînes désignant des ObjectId restent des chaînes : la conversion
    se fait explicitement par l'appelant.
    """
    converted = {}
    for key, value in data.items():
        if isinstance(value, dict):
            converted[key] = convert_pydantic_for_mongodb(value)
        elif isinstance(value, list):
            converted[key] = [
                convert_pydantic_for_mongodb(item) if isinstance(item, dict) else item
                for item in value
            ]
        elif hasattr(value, "value") and not isinstance(value, (datetime, ObjectId)):
            # Enum -> valeur brute
            converted[key] = value.value
        else:
            converted[key] = value
    return converted


def convert_mongodb_result(result: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    Convertit un résultat MongoDB pour qu'il soit compatible avec Pydantic :
    tous les ObjectId (y compris dans les listes et sous-documents) deviennent des str.
    """
    if not result:
        return result

    def _convert(value: Any) -> Any:
        if isinstance(value, ObjectId):
            return str(value)
        if isinstance(value, dict):
            return {k: _convert(v) for k, v in value.items()}
        if isinstance(value, list):
            return [_convert(item) for item in value]
        return value

    return _convert(result)


def utcnow() -> datetime:
    """Date UTC naïve, comme celles renvoyées par PyMongo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
