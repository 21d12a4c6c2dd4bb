"""Run-length grouping of ordered records."""

from .runs import Group, GroupExpansion, group_runs, key_by, status_of

__all__ = ["Group", "GroupExpansion", "group_runs", "key_by", "status_of"]
