"""Day planner: recurring events, conflict detection, free-time planning and reminders."""
