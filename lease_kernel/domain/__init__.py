"""Pure domain layer: values, state machines and DTOs.  Zero I/O."""
