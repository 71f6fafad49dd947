"""
Domain layer - pure value objects with zero I/O.

Lot snapshots, allocations, eligibility policy, workflow state machines
and the injectable clock live here.
"""
