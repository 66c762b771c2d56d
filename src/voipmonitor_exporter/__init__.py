"""Prometheus exporter for VoIPmonitor call statistics.

Every scrape logs in to the VoIPmonitor REST API, queries CDR statistics for
each configured sensor concurrently, and reports the call counts per last
SIP response.
"""

__version__ = "0.1.0"
