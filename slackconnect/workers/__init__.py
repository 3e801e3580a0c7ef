"""Background workers that run outside the API process."""
