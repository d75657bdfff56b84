"""Admin view of customer accounts."""
import re
import logging
from typing import Any, Dict, List, Optional, Tuple

from pymongo.database import Database

from database import oid, paginate, utcnow
from errors import NotFound
from schemas import Pagination

logger = logging.getLogger(__name__)


def list_users(db: Database, search: Optional[str] = None, role: Optional[str] = None,
               is_active: Optional[bool] = None, page: int = 1,
               limit: int = 20) -> Tuple[List[Dict[str, Any]], Pagination]:
    filt: Dict[str, Any] = {}
    if role:
        filt["is_admin"] = True if role == "admin" else {"$ne": True}
    if is_active is not None:
        filt["is_active"] = is_active
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        filt["$or"] = [{"name": pattern}, {"email": pattern}]
    return paginate(db, "user", filt, page, limit, sort=[("created_at", -1)])


def set_user_status(db: Database, user_id: str, is_active: bool) -> Dict[str, Any]:
    _id = oid(user_id)
    result = db["user"].update_one({"_id": _id}, {"$set": {"is_active": is_active, "updated_at": utcnow()}}) if _id else None
    if result is None or result.matched_count == 0:
        raise NotFound("User not found")
    logger.info("User %s %s", user_id, "activated" if is_active else "deactivated")
    return db["user"].find_one({"_id": _id})
