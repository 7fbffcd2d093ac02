"""Homelab Insights - predictive analytics for home-lab metrics"""

__version__ = "0.1.0"
