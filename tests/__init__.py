"""msgarchive test suite."""
