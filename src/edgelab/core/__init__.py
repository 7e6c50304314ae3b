"""Domain models, enumerations, exceptions and shared helpers."""
