"""Pure domain layer: enums, frozen DTOs, clock, period keys.  ZERO I/O."""
