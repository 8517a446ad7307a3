"""Pure pass DTOs and schedule evaluation.  ZERO I/O."""
