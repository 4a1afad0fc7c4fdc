"""Pure domain types for the workflow kernel.  No I/O."""
