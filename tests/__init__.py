"""lake-export-foundry test suite."""
