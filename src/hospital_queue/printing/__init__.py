"""
Ticket printing queue.
"""
