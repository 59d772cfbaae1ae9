"""Movie catalog aggregation: multi-source crawl and reconciliation engine"""

__version__ = "0.1.0"
