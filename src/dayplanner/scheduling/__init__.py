"""Pure scheduling functions: interval math, recurrence, conflicts, availability, validation."""
