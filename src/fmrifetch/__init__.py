"""Fetch a subject/run subset of an OpenNeuro dataset and its fMRIPrep derivatives."""

__version__ = "0.1.0"
