"""
Alerts API
Endpoints for managing alert rules and running checks.

Endpoints:
    POST   /api/alerts/rules                 → Create alert rule
    GET    /api/alerts/rules?user_id=        → List a user's rules
    GET    /api/alerts/rules/{id}            → Get rule by ID
    PATCH  /api/alerts/rules/{id}            → Update rule
    DELETE /api/alerts/rules/{id}            → Delete rule
    POST   /api/alerts/rules/{id}/enable     → Enable rule
    POST   /api/alerts/rules/{id}/disable    → Disable rule
    POST   /api/alerts/defaults/{user_id}    → Create the default rules
    POST   /api/alerts/pets                  → Register a pet for user-wide rules
    POST   /api/alerts/check                 → Check one pet now
    POST   /api/alerts/sweep                 → Check every pet with an active rule
    GET    /api/alerts/statistics/{user_id}  → Per-user rule statistics
    GET    /api/alerts/notifications/{user_id} → Queued notifications
    GET    /api/alerts/stats                 → Engine statistics
"""

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field, ValidationError

from alerts import (
    AlertEngine,
    AlertRule,
    CustomConditions,
    NotificationChannels,
    RuleFrequency,
    RuleTriggers,
    alert_statistics,
    get_alert_engine,
)
from core.exceptions import AlertEngineError, RuleNotFoundError
from db import SQLiteStorage, get_storage


router = APIRouter(prefix="/alerts", tags=["Alerts"])


# =============================================================================
# Request Models
# =============================================================================

class CreateRuleRequest(BaseModel):
    """Request body for creating an alert rule"""
    user_id: str
    pet_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    is_active: bool = True
    triggers: RuleTriggers
    notifications: NotificationChannels = Field(default_factory=NotificationChannels)
    frequency: RuleFrequency = Field(default_factory=RuleFrequency)
    custom_conditions: Optional[CustomConditions] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "user_id": "user-1",
                "pet_id": "pet-1",
                "name": "Health decline warning",
                "triggers": {
                    "anomaly_types": ["health_decline"],
                    "severity_levels": ["medium", "high"],
                    "minimum_confidence": 70
                },
                "notifications": {"in_app": True, "email": True, "push": False},
                "frequency": {"max_per_day": 2, "max_per_week": 5, "cooldown_hours": 12}
            }
        }
    }


class RegisterPetRequest(BaseModel):
    pet_id: str
    user_id: str
    name: Optional[str] = None


class CheckRequest(BaseModel):
    """Request body for an on-demand check"""
    user_id: str
    pet_id: str


def _unavailable(e: AlertEngineError) -> HTTPException:
    return HTTPException(503, f"Storage unavailable: {e}")


def _invalid(e: ValidationError) -> HTTPException:
    return HTTPException(422, jsonable_encoder(e.errors(include_url=False, include_context=False)))


# =============================================================================
# Rule Management
# =============================================================================

@router.post("/rules", status_code=201)
async def create_rule(request: CreateRuleRequest, storage: SQLiteStorage = Depends(get_storage)):
    """
    Create a new alert rule.

    A rule without pet_id applies to every registered pet of the user.
    """
    try:
        rule = AlertRule(**request.model_dump())
    except ValidationError as e:
        raise _invalid(e)

    try:
        created = storage.create_rule(rule)
    except AlertEngineError as e:
        raise _unavailable(e)

    return {
        "message": "Alert rule created",
        "rule": created.to_dict()
    }


@router.get("/rules")
async def list_rules(
    user_id: str,
    pet_id: Optional[str] = None,
    include_inactive: bool = False,
    storage: SQLiteStorage = Depends(get_storage)
):
    """Get a user's rules (pet-scoped listing includes user-wide rules)"""
    try:
        rules = storage.list_rules(user_id, pet_id=pet_id, include_inactive=include_inactive)
    except AlertEngineError as e:
        raise _unavailable(e)

    return {
        "count": len(rules),
        "rules": [r.to_dict() for r in rules]
    }


@router.get("/rules/{rule_id}")
async def get_rule(rule_id: str, storage: SQLiteStorage = Depends(get_storage)):
    """Get a specific alert rule"""
    try:
        rule = storage.get_rule(rule_id)
    except RuleNotFoundError:
        raise HTTPException(404, f"Rule not found: {rule_id}")
    except AlertEngineError as e:
        raise _unavailable(e)

    return {"rule": rule.to_dict()}


def _update(storage: SQLiteStorage, rule_id: str, changes: Dict[str, Any]) -> AlertRule:
    try:
        changes = {k: v for k, v in changes.items() if k != "rule_id"}
        return storage.update_rule(rule_id, **changes)
    except RuleNotFoundError:
        raise HTTPException(404, f"Rule not found: {rule_id}")
    except ValidationError as e:
        raise _invalid(e)
    except AlertEngineError as e:
        raise _unavailable(e)


@router.patch("/rules/{rule_id}")
async def update_rule(
    rule_id: str,
    changes: Dict[str, Any],
    storage: SQLiteStorage = Depends(get_storage)
):
    """
    Update an alert rule.

    Nested parts (triggers, notifications, frequency, custom_conditions)
    are replaced as a whole. Counters cannot be edited.
    """
    rule = _update(storage, rule_id, changes)
    return {
        "message": "Alert rule updated",
        "rule": rule.to_dict()
    }


@router.delete("/rules/{rule_id}")
async def delete_rule(rule_id: str, storage: SQLiteStorage = Depends(get_storage)):
    """Delete an alert rule"""
    try:
        deleted = storage.delete_rule(rule_id)
    except AlertEngineError as e:
        raise _unavailable(e)

    if not deleted:
        raise HTTPException(404, f"Rule not found: {rule_id}")

    return {"message": f"Rule {rule_id} deleted"}


@router.post("/rules/{rule_id}/enable")
async def enable_rule(rule_id: str, storage: SQLiteStorage = Depends(get_storage)):
    """Enable an alert rule"""
    _update(storage, rule_id, {"is_active": True})
    return {"message": f"Rule {rule_id} enabled"}


@router.post("/rules/{rule_id}/disable")
async def disable_rule(rule_id: str, storage: SQLiteStorage = Depends(get_storage)):
    """Disable an alert rule"""
    _update(storage, rule_id, {"is_active": False})
    return {"message": f"Rule {rule_id} disabled"}


@router.post("/defaults/{user_id}")
async def create_default_rules(user_id: str, storage: SQLiteStorage = Depends(get_storage)):
    """Create the three default rules for a user (skips ones already present)"""
    try:
        created = storage.create_default_rules(user_id)
    except AlertEngineError as e:
        raise _unavailable(e)

    return {"message": f"Created {created} default rules", "created": created}


@router.post("/pets", status_code=201)
async def register_pet(request: RegisterPetRequest, storage: SQLiteStorage = Depends(get_storage)):
    """Register a pet so that its owner's user-wide rules cover it"""
    try:
        storage.add_pet(request.pet_id, request.user_id, request.name)
    except AlertEngineError as e:
        raise _unavailable(e)

    return {"message": f"Pet {request.pet_id} registered"}


# =============================================================================
# Checks
# =============================================================================

@router.post("/check")
async def check_pet(request: CheckRequest, engine: AlertEngine = Depends(get_alert_engine)):
    """
    Run detection for one pet and fire every eligible rule.
    """
    try:
        results = await engine.check_subject(request.user_id, request.pet_id)
    except AlertEngineError as e:
        raise _unavailable(e)

    return {
        "user_id": request.user_id,
        "pet_id": request.pet_id,
        "triggered_count": len(results),
        "triggered": [r.to_dict() for r in results]
    }


@router.post("/sweep")
async def run_sweep(engine: AlertEngine = Depends(get_alert_engine)):
    """Check every pet covered by an active rule"""
    try:
        summary = await engine.run_batch_sweep()
    except AlertEngineError as e:
        raise _unavailable(e)

    return summary.to_dict()


# =============================================================================
# Statistics
# =============================================================================

@router.get("/statistics/{user_id}")
async def get_statistics(
    user_id: str,
    days: int = Query(default=30, ge=1, le=365),
    storage: SQLiteStorage = Depends(get_storage)
):
    """Totals, recent triggers and per-rule performance for a user"""
    try:
        rules = storage.list_rules(user_id, include_inactive=True)
    except AlertEngineError as e:
        raise _unavailable(e)

    return alert_statistics(rules, datetime.now(), days)


@router.get("/notifications/{user_id}")
async def get_notifications(
    user_id: str,
    limit: int = Query(default=50, le=200),
    storage: SQLiteStorage = Depends(get_storage)
):
    """Get queued notifications for a user, newest first"""
    try:
        notifications = storage.get_notifications(user_id, limit)
    except AlertEngineError as e:
        raise _unavailable(e)

    return {
        "count": len(notifications),
        "notifications": notifications
    }


@router.get("/stats")
async def get_stats(engine: AlertEngine = Depends(get_alert_engine)):
    """Get alert engine statistics"""
    return engine.stats()
