"""Adapters for the Click, Payme and Octo payment gateways."""
