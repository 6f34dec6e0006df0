import logging
from typing import Any, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from ..engine import QuoteRequest
from ..engine import expression
from ..engine.errors import ExpressionError, PricingError
from ..engine.resolver import EvaluationContext, VariableResolver
from .rules_api import router as rules_router
from .state import engine

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Quote Engine API",
    description="Formula-driven pricing for service quotes",
    version="1.0.0"
)

# Enable CORS for frontend development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include rules management API
app.include_router(rules_router)


class QuoteBody(BaseModel):
    answers: dict[str, Any] = {}
    services: Optional[list[str]] = None


class ExpressionBody(BaseModel):
    expression: str
    answers: dict[str, Any] = {}


def selected_services_from(answers: dict[str, Any], services: Optional[list[str]]) -> Optional[list[str]]:
    """Explicit selection wins; otherwise use an answers['services'] list if present."""
    if services is not None:
        return services
    listed = answers.get("services")
    if isinstance(listed, list):
        return [str(s) for s in listed]
    return None


@app.get("/")
async def root():
    return {"status": "online", "message": "Quote Engine API Active"}


@app.post("/quote")
async def calculate_quote(body: QuoteBody):
    try:
        request = QuoteRequest(
            answers=body.answers,
            selected_services=selected_services_from(body.answers, body.services)
        )
        quote = engine.calculate(request)
        result = quote.to_dict()
        result["hasPricing"] = quote.has_pricing
        return result
    except PricingError as e:
        logger.exception("Quote calculation failed")
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/expressions/evaluate")
async def evaluate_expression(body: ExpressionBody):
    """Resolve, substitute and evaluate one expression against the live catalogs."""
    context = EvaluationContext(answers=body.answers, services=engine.services)
    resolver = VariableResolver(context, engine.settings)

    placeholders = expression.extract_placeholders(body.expression)
    values = {name: resolver.resolve(name) for name in placeholders}
    substituted = expression.substitute(body.expression, values)

    response = {
        "placeholders": placeholders,
        "values": values,
        "substituted": substituted,
        "warnings": list(context.trace.warnings),
    }
    try:
        response["value"] = expression.evaluate(substituted)
        response["valid"] = True
    except ExpressionError as e:
        response["value"] = None
        response["valid"] = False
        response["error"] = str(e)
    return response


@app.get("/system/status")
async def get_status():
    return {
        "engine_active": True,
        "rules_count": len(engine.rules),
        "active_rules": sum(1 for r in engine.rules if r.active),
        "services_count": len(engine.services),
        "catalog_hash": engine.catalog_hash,
        "data_dir": str(engine.settings.data_dir),
    }
