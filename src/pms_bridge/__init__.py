"""
OpenDental → Local Store sync and report import agent.

Keeps a local SQLite copy of new PMS patients and their insurance, and files
externally produced report PDFs into the PMS patient image folders.
"""

__version__ = "1.0.0"
