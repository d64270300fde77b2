"""Business logic services for LuxGate."""
