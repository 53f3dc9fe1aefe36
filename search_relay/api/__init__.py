"""HTTP route layer and request schemas."""
