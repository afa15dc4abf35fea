"""Stroke analysis: rower state, phase detection and coaching."""
