"""
Complaint report export service.

Turns complaint records from the complaint management API into CSV, Excel,
PDF and templated HTML reports under role-based access control, with
deduplication of concurrent export requests and recovery of stuck exports.
"""

__version__ = "1.0.0"
