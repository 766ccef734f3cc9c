"""Parallel execution of row bands and Fern chains."""
