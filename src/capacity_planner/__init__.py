"""Resource capacity planning: weekly allocations, utilization and capacity alerts."""

__version__ = "0.1.0"
