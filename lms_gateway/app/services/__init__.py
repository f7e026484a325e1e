"""Service layer for the LMS gateway."""
