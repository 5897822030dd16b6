"""Risk scoring over proctoring events"""

from .risk_scorer import RiskAnalysis, RiskScorer

__all__ = ["RiskAnalysis", "RiskScorer"]
