"""Security checker chat participant: checklist-grounded code review over a chat stream."""

__version__ = "0.1.0"
