"""
File Conversion Service package.

This module provides a FastAPI application exposing REST endpoints that
convert uploaded images, PDFs and office documents between formats. The
application lives in `file_service.webapi`.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
