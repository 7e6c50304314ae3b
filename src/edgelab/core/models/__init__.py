"""Domain models shared by the simulation, optimization and validation layers."""
