"""Session models, errors, configuration and the acquisition coordinator."""
