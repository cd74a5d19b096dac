"""Internal protocol plumbing for libhg, not a public API."""
