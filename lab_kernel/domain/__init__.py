"""Pure domain layer: enums, transition tables, value objects and ports."""
