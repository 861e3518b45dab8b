"""Path-coverage harness: drives OOTS bridge paths and checks their log trail."""
