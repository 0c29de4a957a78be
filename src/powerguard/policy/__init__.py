"""Automatic enforcement: schedules, monthly limits and unplug detection."""
