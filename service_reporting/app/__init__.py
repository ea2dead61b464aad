"""Reporting service application."""
