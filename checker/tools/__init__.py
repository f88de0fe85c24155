from checker.tools.checklist import ChecklistLocation, fetch_checklist

__all__ = ["ChecklistLocation", "fetch_checklist"]
