"""Regression engines: the registry catalogue and the trainer interface."""
