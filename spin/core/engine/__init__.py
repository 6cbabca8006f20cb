"""Engine — dependency graph, planning, locking and execution."""
