"""
Contact authorization: which phones each worker identity may add to groups.
"""
