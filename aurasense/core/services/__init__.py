"""
Core services for the application.

This package contains the risk-inference pipeline: tree evaluation, trend
analysis, explanation, prediction and alerting.
"""

from .alerts import AlertManager, RiskAlert, RiskMonitor
from .explanation import ExplanationEngine
from .prediction import RiskPredictionService
from .tree_evaluator import DecisionTreeEvaluator
from .trend_analyzer import compute_trends

__all__ = [
    "AlertManager",
    "DecisionTreeEvaluator",
    "ExplanationEngine",
    "RiskAlert",
    "RiskMonitor",
    "RiskPredictionService",
    "compute_trends",
]
