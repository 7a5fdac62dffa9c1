"""High-level API layer.

Components:
- AutopilotAPI: configured engine facade with dry runs, recommendations and
  DataFrame reporting
- assess_risk: LOW/MEDIUM/HIGH classification of a switch
"""

from defi_autopilot.api.autopilot_api import AutopilotAPI, assess_risk

__all__ = [
    "AutopilotAPI",
    "assess_risk",
]
