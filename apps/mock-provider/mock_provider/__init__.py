"""Behavior-configurable mock EMREX provider used by the path-coverage harness."""
