"""Pulsewatch command line interface."""
