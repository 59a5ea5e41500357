"""Ops Journal: change records on an org/system tree, with subscription notifications."""
