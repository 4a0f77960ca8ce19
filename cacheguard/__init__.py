"""
cacheguard: resilient caching and rate limiting for the marketplace API.

Author: System Architect
Date: 2025-12-05
"""

__version__ = "1.0.0"
