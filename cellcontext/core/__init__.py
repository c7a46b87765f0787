"""Core computational modules for CellContext.

This package contains the analysis modules:
- spatial: L-function and Kontextual statistics, batch engine, export and CLI
- hierarchy: Cell-type hierarchies and the marker-based hierarchy builder
- association: Image weighting and outcome association models
"""
