"""Parameter search: grid search, genetic algorithm and sensitivity sweeps."""
