"""LMS gateway application package."""
