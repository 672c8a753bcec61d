"""Mach-O load command editor"""

__version__ = "1.0.0"
__author__ = "machopatch contributors"
__url__ = "https://github.com/machopatch/machopatch"
