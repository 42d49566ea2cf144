"""Pure computations over loaded records: progress roll-up and money rounding."""
