"""Domain layer: request validation, report builders and handlers."""
