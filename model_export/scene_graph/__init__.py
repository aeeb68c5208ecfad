"""Scene graph model and converters from generic model data."""
