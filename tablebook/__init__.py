"""Table availability, slot locking and booking commit service."""
