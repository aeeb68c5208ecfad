"""Scene encoding, skin patching and the export pipeline."""
