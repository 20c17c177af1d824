"""The rowbind command line inspector."""
