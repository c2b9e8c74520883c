"""
Group membership feature package.

Everything behind the add/remove queues lives here: domain models and
identity normalization, the repository, the add and remove flows, and the
worker job that drives them.
"""
