"""
Announcement audio: phrase construction, speech synthesis and the resolver.
"""
