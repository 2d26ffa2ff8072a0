"""Authentication of callers presenting provider-issued bearer tokens."""
