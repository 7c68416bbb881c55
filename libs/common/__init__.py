"""Common utilities shared by research libraries."""
