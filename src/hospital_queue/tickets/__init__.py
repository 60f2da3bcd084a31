"""
Ticket and counter handles consumed by the call sequencer.
"""
