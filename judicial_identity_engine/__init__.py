"""Judicial Identity Engine: judge identity resolution, position history and outcome-pattern analysis."""
