"""Scheduling module."""
