"""Pure domain types for the approval kernel.  ZERO I/O."""
