"""Local keyword search over markdown documentation corpora."""
