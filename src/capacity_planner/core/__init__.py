"""Pure capacity planning logic: week keys, capacity math, aggregation and alerts."""
