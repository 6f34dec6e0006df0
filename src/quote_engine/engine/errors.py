"""
Error taxonomy for the quote engine.

Resolution errors are non-fatal: the resolver turns them into a zero value
plus a warning. Expression errors are fatal to a single rule only; the rule
evaluator records the rule as 0 and moves on.
"""
from typing import Optional


class PricingError(Exception):
    """Base class for every error raised by the quote engine."""


class ResolutionError(PricingError):
    """A placeholder variable could not be turned into a number."""

    def __init__(self, variable: str, message: str):
        super().__init__(message)
        self.variable = variable


class UnresolvedVariable(ResolutionError):
    """The variable matched no answer field, rule output or service total."""

    def __init__(self, variable: str):
        super().__init__(
            variable,
            f'Variable "{variable}" not found in answers, computed prices or services'
        )


class ForwardReference(ResolutionError):
    """A rule referenced another rule that has not been evaluated in this pass."""

    def __init__(self, variable: str, rule_id: str):
        super().__init__(
            variable,
            f'Pricing rule "{rule_id}" has not been evaluated yet'
        )
        self.rule_id = rule_id


class ExpressionError(PricingError):
    """Base class for failures while evaluating substituted expression text."""

    def __init__(self, message: str, expression: str = "", position: Optional[int] = None):
        super().__init__(message)
        self.expression = expression
        self.position = position


class InvalidExpression(ExpressionError):
    """The text failed the character whitelist or is not valid grammar."""


class EvaluationError(ExpressionError):
    """The expression parsed but did not produce a finite number."""


class CatalogError(PricingError):
    """A rule or service catalog file could not be loaded."""
