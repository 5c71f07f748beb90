"""
Feedback analytics: KPI, trend and category breakdown rollups for survey
responses, plus category scoring and period comparisons.
"""

__version__ = "0.1.0"
