"""Alert rule checks and the evaluator that runs them."""

from fleetwatch.rules.checks import RuleContext
from fleetwatch.rules.evaluator import EvaluationResult, RuleEvaluator

__all__ = ["EvaluationResult", "RuleContext", "RuleEvaluator"]
