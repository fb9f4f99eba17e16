"""Operator tooling for the cross-account pipelines: bootstrap, cleanup and pipeline helper commands."""
