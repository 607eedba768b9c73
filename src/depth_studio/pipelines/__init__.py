"""Kedro pipelines for Depth Studio."""
