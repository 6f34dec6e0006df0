"""
Rules API - FastAPI router for inspecting and testing pricing rules.
"""
import logging
from dataclasses import asdict
from typing import Any, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ..engine.errors import CatalogError
from ..engine.models import FORMULA, PricingRule
from ..services.catalog_service import validate_rule as check_rule
from .state import engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/rules", tags=["rules"])


# Pydantic models for API
class RuleBody(BaseModel):
    """Request model for an ad-hoc rule."""
    rule_id: str
    expression: str = ""
    minimum_value: Optional[float] = None
    maximum_value: Optional[float] = None
    service_id: Optional[str] = None
    name: str = ""
    pricing_type: Optional[str] = None
    billing_frequency: Optional[str] = None
    active: bool = True
    calculation_method: str = FORMULA
    base_price: float = 0.0
    unit_price: Optional[float] = None
    unit_name: Optional[str] = None
    quantity_source_field: Optional[str] = None
    trigger_field: Optional[str] = None
    required_value: Optional[str] = None
    comparison_logic: Optional[str] = None
    discount_eligible: bool = False
    discount_percentage: float = 0.0


class RuleResponse(RuleBody):
    """Response model for a rule."""


class ValidationResponse(BaseModel):
    """Response model for validation."""
    valid: bool
    errors: list[str]
    warnings: list[str]
    placeholders: list[str]


class TestRuleRequest(BaseModel):
    """Request model for testing a rule against answers."""
    rule_id: Optional[str] = None
    rule: Optional[RuleBody] = None
    answers: dict[str, Any] = {}
    services: Optional[list[str]] = None


class TestRuleResponse(BaseModel):
    """Response model for rule test."""
    rule_id: str
    outcome: str
    value: Optional[float]
    trace: list[dict]
    warnings: list[str]


def _with_rule(rules: list[PricingRule], rule: PricingRule) -> list[PricingRule]:
    """Replace the catalog rule with the same id in place, or append."""
    if any(r.rule_id == rule.rule_id for r in rules):
        return [rule if r.rule_id == rule.rule_id else r for r in rules]
    return rules + [rule]


# Endpoints

@router.get("", response_model=list[RuleResponse])
async def list_rules(include_inactive: bool = True, service_id: Optional[str] = None):
    """List pricing rules in evaluation order."""
    rules = [
        r for r in engine.rules
        if (include_inactive or r.active) and (service_id is None or r.service_id == service_id)
    ]
    return [RuleResponse(**asdict(rule)) for rule in rules]


@router.get("/{rule_id}", response_model=RuleResponse)
async def get_rule(rule_id: str):
    """Get a single rule by ID."""
    for rule in engine.rules:
        if rule.rule_id == rule_id:
            return RuleResponse(**asdict(rule))
    raise HTTPException(status_code=404, detail=f"Rule '{rule_id}' not found")


@router.post("/validate", response_model=ValidationResponse)
async def validate_rule(rule_data: RuleBody):
    """Validate a rule against the current catalog order without saving."""
    rule = PricingRule(**rule_data.model_dump())

    earlier = set()
    for existing in engine.rules:
        if existing.rule_id == rule.rule_id:
            break
        earlier.add(existing.rule_id)

    result = check_rule(rule, earlier, engine.settings.rule_reference_prefix)
    return ValidationResponse(
        valid=result.valid,
        errors=result.errors,
        warnings=result.warnings,
        placeholders=result.placeholders
    )


@router.post("/test", response_model=TestRuleResponse)
async def test_rule(request: TestRuleRequest):
    """Run one pass over the live catalog and report a single rule's outcome."""
    rules = engine.rules
    if request.rule is not None:
        rule = PricingRule(**request.rule.model_dump())
        validation = check_rule(rule, rule_reference_prefix=engine.settings.rule_reference_prefix)
        if not validation.valid:
            raise HTTPException(status_code=400, detail={"errors": validation.errors})
        rules = _with_rule(rules, rule)
        rule_id = rule.rule_id
    elif request.rule_id:
        rule_id = request.rule_id
        if not any(r.rule_id == rule_id for r in rules):
            raise HTTPException(status_code=404, detail=f"Rule '{rule_id}' not found")
    else:
        raise HTTPException(status_code=400, detail="Provide rule_id or rule")

    result = engine.evaluator.evaluate_all(rules, request.answers, engine.services, request.services)
    price = result.store.get(rule_id)

    return TestRuleResponse(
        rule_id=rule_id,
        outcome=result.outcomes.get(rule_id, "skipped"),
        value=price.value if price else None,
        trace=[asdict(t) for t in result.trace if t.rule_id == rule_id],
        warnings=result.warnings
    )


@router.post("/reload")
async def reload_rules():
    """Reload both catalogs from disk."""
    try:
        engine.reload_data()
    except CatalogError as e:
        logger.error("Catalog reload failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e))
    return {
        "success": True,
        "rules_count": len(engine.rules),
        "services_count": len(engine.services),
        "catalog_hash": engine.catalog_hash
    }
