"""md-tasker - markdown project and task document engine."""

# No imports at package level to avoid circular import issues
# Import modules directly where needed

__all__ = [
    "archive",
    "coordinates",
    "document",
    "errors",
    "grammar",
    "models",
    "mutations",
    "parser",
    "tasker_logging",
    "workflow",
    "workspace",
]
