"""Pure domain layer: clock, DTOs, settings, and reference-data contracts."""
