"""Chain query gateways."""
