"""qualmatrix: discussion-guide-aligned content analysis for qualitative research."""

__version__ = "0.1.0"
