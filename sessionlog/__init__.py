"""sessionlog - operator session tracking and audit log review."""
