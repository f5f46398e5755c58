"""Forced teardown of Azure resource groups."""
