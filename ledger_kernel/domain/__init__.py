"""Pure domain layer: clock, value objects, DTOs, events and results."""
