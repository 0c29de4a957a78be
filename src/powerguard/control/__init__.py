"""Operator actions: manual toggles and device lifecycle edits."""
