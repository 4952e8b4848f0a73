"""ZeroMQ transport: many logical streams multiplexed over ROUTER/DEALER."""
