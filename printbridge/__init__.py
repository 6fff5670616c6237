"""
printbridge: makes printers shared on the network available as local
print queues, and keeps those queues in step with what the network
currently announces.
"""

__version__ = "1.0.0"
