"""
Receipt Planner – photographed grocery receipt to three-day meal plan.

Modules:
- ocr: Tesseract engine lifecycle and the progress-reporting OCR pipeline
- providers: shared prompt, per-provider backends and the HTTP gateway
- domain: canonical meal-plan types, error taxonomy, plan normalization
- workflow: the Upload -> Review -> Plan controller and session wiring
- settings: persisted provider choice and API key
- web / cli: user-facing surfaces over the controller
"""

__version__ = "0.1.0"

__all__ = [
    "config",
    "logging",
    "paths",
]
