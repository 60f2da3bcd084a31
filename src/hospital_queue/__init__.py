"""
Hospital queue call core: call sequencing, announcements and ticket printing.
"""
